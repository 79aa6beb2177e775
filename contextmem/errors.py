"""Error taxonomy shared by every engine layer.

Propagation model:
    - Synchronous operations (document ingestion, explicit search) raise these
      errors to the caller.
    - Background chat indexing logs and swallows them.
    - The HTTP adapter maps each class to a status code.
"""


class ContextMemError(Exception):
    """Base class for all engine errors."""


class CredentialRequired(ContextMemError):
    """An operation needs a credential and none (or an empty one) was given."""


class CredentialInvalid(ContextMemError):
    """The embedding or completion provider rejected the credential."""


class CredentialMismatch(CredentialInvalid):
    """A credential differs from the one the shared index was built with.

    Vectors from different credentials may live in incompatible embedding
    spaces, so the index refuses to mix them.
    """


class EmbeddingProviderError(ContextMemError):
    """Transient embedding failure: rate limit, timeout, network or 5xx."""


class UnsupportedFormat(ContextMemError):
    """No text extractor is registered for the uploaded file type."""


class ValidationError(ContextMemError):
    """Empty query, empty content or otherwise malformed input."""


class CompletionError(ContextMemError):
    """The text-generation provider failed to produce a completion."""
