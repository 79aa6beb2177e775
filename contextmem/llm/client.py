"""OpenAI-compatible transport client for chat completions.

Model invocation flow:
    `service.generate_answer` -> `send_request(payload, credential, ...)` ->
    `requests.post` -> parsed assistant text.

Retry behavior:
    No retry loop. Each call is attempted once with the configured timeout.

Failure handling model:
    - Missing credential -> `CredentialRequired`.
    - HTTP 401/403 -> `CredentialInvalid`.
    - Other HTTP/transport errors and malformed bodies -> `CompletionError`,
      carrying only the status code, never the raw response body.
"""

import requests

from contextmem.errors import CompletionError, CredentialInvalid, CredentialRequired


def send_request(payload: dict, credential: str, url: str, timeout: float = 120) -> str:
    """POST one completion request and return the stripped assistant text."""
    if not credential or not str(credential).strip():
        raise CredentialRequired("An API key is required for chat completion")

    headers = {
        "Authorization": f"Bearer {str(credential).strip()}",
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(url, headers=headers, json=payload, timeout=timeout)
    except requests.exceptions.RequestException as err:
        raise CompletionError("Completion request failed") from err

    if response.status_code in (401, 403):
        raise CredentialInvalid(
            f"Completion provider rejected credential (status={response.status_code})"
        )

    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as err:
        raise CompletionError(f"Completion HTTP error ({response.status_code})") from err

    try:
        data = response.json()
        return data["choices"][0]["message"]["content"].strip()
    except (ValueError, KeyError, IndexError, TypeError, AttributeError) as err:
        raise CompletionError("Malformed completion response") from err
