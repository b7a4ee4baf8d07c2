"""Custom exceptions for the RAG ask server."""


class RagAskError(Exception):
    """Base exception for RAG ask errors."""

    pass


class LLMProviderError(RagAskError):
    """Raised when LLM provider configuration is invalid."""

    pass


class SearchError(RagAskError):
    """Raised when a search collaborator (web engine or vector index) fails."""

    pass


class InvalidRequestError(RagAskError):
    """Raised when an ask payload cannot be parsed."""

    pass


class RateLimitExceeded(RagAskError):
    """Raised when an anonymous caller exhausts its request quota."""

    def __init__(self, identifier: str, limit: int, remaining: int = 0, reset: float | None = None):
        super().__init__("Rate limit exceeded")
        self.identifier = identifier
        self.limit = limit
        self.remaining = remaining
        self.reset = reset
