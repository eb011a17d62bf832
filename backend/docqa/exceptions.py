"""Error taxonomy shared by services and routers."""

from typing import Any, Optional


class DocQAError(Exception):
    """Base application exception."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error body."""
        return {"error": self.message}


class ValidationFailure(DocQAError):
    """A required input is missing or malformed."""

    status_code = 400


class NotFoundFailure(DocQAError):
    """An unknown filename or session was referenced."""

    status_code = 404


class UpstreamFailure(DocQAError):
    """An external model or extraction step failed after local retries."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class ExtractionFailure(UpstreamFailure):
    """The PDF could not be read or contained no text."""


class EmbeddingFailure(UpstreamFailure):
    """The embedding model kept failing for an input."""


class GenerationFailure(UpstreamFailure):
    """The generative model kept failing for a prompt."""


class StorageFailure(DocQAError):
    """A persistent store call failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
