"""Messages-to-payload adapter for LLM invocation.

The function does not build prompts; `contextmem.prompting` does. It only
applies generation defaults from `EngineConfig` and forwards to transport.
"""

from contextmem.config import EngineConfig
from contextmem.llm.client import send_request


def generate_answer(messages: list[dict], credential: str, config: EngineConfig) -> str:
    """Invoke the configured completion model.

    Parameter semantics:
        - `temperature`: `config.completion_temperature` (default 0.7).
        - `max_tokens`: `config.completion_max_tokens` (default 500).
    """
    payload = {
        "model": config.completion_model,
        "messages": messages,
        "temperature": config.completion_temperature,
        "max_tokens": config.completion_max_tokens,
    }

    return send_request(
        payload,
        credential,
        url=config.completion_url,
        timeout=config.completion_timeout_seconds,
    )
