"""Error taxonomy for the retrieval core.

Hierarchy:
- RetrievalCoreError: base for everything raised by this package
  - ValidationError: malformed chunking parameters
  - EmptyDocument: nothing extractable in a document
  - BackendError: a single external channel failed (absorbed by callers)
    - BackendTimeout
    - BackendUnavailable
  - RetrievalFailed: every retrieval channel failed (surfaced to callers)

Cache misses are not errors; see netdoc_rag.cache.MISS.
"""


class RetrievalCoreError(Exception):
    """Base class for retrieval core errors."""


class ValidationError(RetrievalCoreError, ValueError):
    """Raised when chunking parameters are inconsistent or non-positive."""


class EmptyDocument(RetrievalCoreError):
    """Raised when a document contains no extractable content."""


class BackendError(RetrievalCoreError):
    """A single external collaborator (search channel, reranker) failed.

    Attributes:
        channel: Logical channel name, e.g. "keyword", "vector", "rerank".
    """

    def __init__(self, channel: str, message: str = ""):
        self.channel = channel
        super().__init__(f"{channel}: {message}" if message else channel)


class BackendTimeout(BackendError):
    """The channel did not answer before its deadline."""


class BackendUnavailable(BackendError):
    """The channel raised or returned an unusable response."""


class RetrievalFailed(RetrievalCoreError):
    """All retrieval channels failed; distinct from an empty result set.

    Attributes:
        failures: The per-channel errors that caused the failure.
    """

    def __init__(self, failures):
        self.failures = list(failures)
        detail = "; ".join(str(f) for f in self.failures) or "no channel answered"
        super().__init__(f"retrieval failed: {detail}")
