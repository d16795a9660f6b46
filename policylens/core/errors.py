"""
Error taxonomy for the comparison pipeline

Almost every error below is absorbed where it happens and replaced by a
sentinel value. Only CollaboratorUnavailableError reaches the caller of
the top-level entry points.
"""
from typing import Optional


class PolicyLensError(Exception):
    """Base class for all pipeline errors"""


class StructureNotFoundError(PolicyLensError):
    """No chapter headers matched the text"""


class RateLimitedError(PolicyLensError):
    """The completion collaborator signalled quota exhaustion"""

    def __init__(self, message: str = "rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class MalformedModelOutputError(PolicyLensError):
    """Expected structured output could not be parsed"""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class CompletionError(PolicyLensError):
    """Non rate-limit failure of a completion call"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingUnavailableError(PolicyLensError):
    """The embedding collaborator returned no vector"""


class CacheIOError(PolicyLensError):
    """Embedding cache storage could not be read or written"""


class CollaboratorUnavailableError(PolicyLensError):
    """An external collaborator cannot be reached at the transport level"""

    def __init__(self, service: str, message: str = ""):
        super().__init__(f"{service} unavailable: {message}" if message else f"{service} unavailable")
        self.service = service
