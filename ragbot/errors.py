from typing import Any, Dict, Optional


class RagbotError(Exception):
    """Base error; rendered as JSON {"error", "details"?} with `status_code`."""
    status_code: int = 500

    def __init__(self, message: str, details: Any = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.headers = headers or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationError(RagbotError):
    """Missing or invalid credential."""
    status_code = 401


class ValidationError(RagbotError):
    """Malformed, oversized or disallowed input."""
    status_code = 400


class ExtractionError(RagbotError):
    """Text could not be extracted from the source."""
    status_code = 400


class EmptyContentError(ExtractionError):
    pass


class ParseError(ExtractionError):
    pass


class UnsupportedTypeError(ExtractionError):
    pass


class FetchError(ExtractionError):
    pass


class NotFoundError(RagbotError):
    status_code = 404


class RateLimitExceeded(RagbotError):
    status_code = 429


class ConfigurationError(RagbotError):
    """Server misconfiguration (missing API key, embedding dimension mismatch)."""
    status_code = 500


class EmbeddingServiceError(RagbotError):
    """Upstream embedding service failure."""
    status_code = 500


class GenerationServiceError(RagbotError):
    """Upstream chat model failure."""
    status_code = 500


class PersistenceError(RagbotError):
    """Datastore write failure."""
    status_code = 500
