"""Retrieval package.

Scope:
    - `retriever`: user/type-filtered semantic search over the shared index.
    - `context_builder`: recent + relevant-history + document context assembly.
"""
