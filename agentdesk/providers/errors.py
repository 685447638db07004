"""Exceptions raised by the provider adapters and gateway."""

from __future__ import annotations


class ProviderConfigurationError(ValueError):
    """Missing credentials, unknown provider or unsupported model."""


class ProviderError(RuntimeError):
    """A vendor call failed.

    ``retryable`` tells callers whether repeating the same request later could
    succeed (rate limits, timeouts, dropped connections).
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class ProviderAuthenticationError(ProviderError):
    """The vendor rejected the configured API key."""


class ProviderRateLimitError(ProviderError):
    """The vendor throttled the request."""

    def __init__(self, message: str, **kwargs) -> None:
        kwargs["retryable"] = True
        super().__init__(message, **kwargs)


class ProviderBadRequestError(ProviderError):
    """The vendor refused the request payload."""


def error_for_status(provider: str, status_code: int, detail: str) -> ProviderError:
    """Map an HTTP status returned by ``provider`` to the matching error."""

    if status_code == 401:
        return ProviderAuthenticationError(
            f"Invalid {provider} API key", provider=provider, status_code=status_code
        )
    if status_code == 429:
        return ProviderRateLimitError(
            f"{provider} rate limit exceeded", provider=provider, status_code=status_code
        )
    if status_code == 400:
        return ProviderBadRequestError(
            f"{provider} bad request: {detail}", provider=provider, status_code=status_code
        )
    return ProviderError(
        f"{provider} API error ({status_code}): {detail}",
        provider=provider,
        status_code=status_code,
        retryable=status_code >= 500,
    )
