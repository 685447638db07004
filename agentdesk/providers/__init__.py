"""Provider gateway over the supported model vendors."""

from .base import BaseProvider, CompletionResult, ModelInfo
from .errors import (
    ProviderAuthenticationError,
    ProviderBadRequestError,
    ProviderConfigurationError,
    ProviderError,
    ProviderRateLimitError,
)
from .factory import ProviderFactory
from .gateway import ProviderGateway

__all__ = [
    "BaseProvider",
    "CompletionResult",
    "ModelInfo",
    "ProviderAuthenticationError",
    "ProviderBadRequestError",
    "ProviderConfigurationError",
    "ProviderError",
    "ProviderFactory",
    "ProviderGateway",
    "ProviderRateLimitError",
]
