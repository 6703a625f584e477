"""Error classes shared by the search and language-model clients."""

from __future__ import annotations


class SearchProviderError(RuntimeError):
    """Base error for search provider failures."""

    def __init__(self, message: str, code: str = "SEARCH_ERROR") -> None:
        super().__init__(message)
        self.code = code


class SearchRateLimitError(SearchProviderError):
    """Raised when a search provider responds with HTTP 429."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Rate limited by {provider}", code=f"{provider.upper()}_429")


class SearchTimeoutError(SearchProviderError):
    """Raised when a search request times out."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} request timed out", code=f"{provider.upper()}_TIMEOUT")


class SearchSchemaError(SearchProviderError):
    """Raised when a provider response does not match the expected schema."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message, code=f"{provider.upper()}_SCHEMA_ERR")


class LLMProviderError(RuntimeError):
    """Raised when the language-model provider fails or exhausts its retries."""

    def __init__(self, message: str, code: str = "LLM_PROVIDER_ERROR") -> None:
        super().__init__(message)
        self.code = code


class LLMValidationError(LLMProviderError):
    """Raised when a model response cannot be parsed into the requested schema."""

    def __init__(self, message: str, code: str = "LLM_SCHEMA_ERR") -> None:
        super().__init__(message, code=code)
