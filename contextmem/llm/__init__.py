"""LLM access package.

Module split:
    - `service`: payload construction with generation defaults.
    - `client`: OpenAI-compatible HTTP transport and error mapping.
"""
