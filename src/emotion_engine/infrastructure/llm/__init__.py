"""Oracle client infrastructure."""

from .client import (
    OpenRouterClient, OracleResponse, OracleError, AuthError,
    RateLimited, TransientError, ExhaustedRetries, classify_error,
)

__all__ = [
    "OpenRouterClient", "OracleResponse", "OracleError", "AuthError",
    "RateLimited", "TransientError", "ExhaustedRetries", "classify_error",
]
