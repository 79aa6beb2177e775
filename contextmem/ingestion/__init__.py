"""Document ingestion package.

Scope:
    - `extractors`: MIME-type keyed plain-text extraction.
    - `splitter`: recursive, overlap-preserving text chunking.
    - `pipeline`: chunk tagging and synchronous indexing through the gateway.
"""
