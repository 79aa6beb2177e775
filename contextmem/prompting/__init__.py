"""Prompting package.

Deterministic prompt-construction helpers. No retrieval, memory access or model
invocation happens here.
"""
