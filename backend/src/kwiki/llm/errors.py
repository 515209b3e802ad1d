"""Error taxonomy shared by all provider adapters."""


class LLMError(Exception):
    """Base exception for provider adapter errors.

    Attributes:
        provider: Name of the provider that raised the error (may be empty).
        partial_text: Text accumulated by a streaming call before it failed.
        retryable: Whether the orchestrator may retry the call.
    """

    retryable = False

    def __init__(self, message: str, provider: str = "", partial_text: str = ""):
        super().__init__(message)
        self.provider = provider
        self.partial_text = partial_text


class LLMAuthenticationError(LLMError):
    """Raised when the credential is missing or rejected by the provider."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limited by the LLM provider."""

    retryable = True


class LLMConnectionError(LLMError):
    """Raised when unable to connect to the LLM provider."""

    retryable = True


class LLMTimeoutError(LLMError):
    """Raised when a call exceeds its deadline or a stream goes idle."""

    retryable = True


class LLMBadResponseError(LLMError):
    """Raised on an unclassified non-2xx status or an unparseable body."""

    pass


class ProviderNotFoundError(LLMError):
    """Raised when no provider is registered under the requested name."""

    pass


class NoAvailableProviderError(LLMError):
    """Raised when no registered provider is currently available."""

    pass


_AUTH_MARKERS = ("invalid api key", "invalid_api_key", "incorrect api key", "unauthorized", "api key not valid")
_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "quota", "too many requests")


def classify_http_error(provider: str, status_code: int, body: str) -> LLMError:
    """Map a non-2xx response to an error kind.

    Args:
        provider: Provider name for the error.
        status_code: HTTP status code of the response.
        body: Response body text (used for heuristics).

    Returns:
        An LLMError subclass instance; the caller raises it.
    """
    lowered = body.lower()
    snippet = body[:200]
    message = f"{provider} API error {status_code}: {snippet}"

    if status_code in (401, 403) or any(marker in lowered for marker in _AUTH_MARKERS):
        return LLMAuthenticationError(message, provider=provider)
    if status_code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return LLMRateLimitError(message, provider=provider)
    if status_code in (408, 504):
        return LLMTimeoutError(message, provider=provider)
    return LLMBadResponseError(message, provider=provider)
