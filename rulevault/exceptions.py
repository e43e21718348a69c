"""
RuleVault - Custom exceptions for error handling.
"""

from typing import Any, Optional


class RuleVaultError(Exception):
    """Base exception for all RuleVault errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class NotFoundError(RuleVaultError):
    """Raised when a requested version or entry is not found."""

    pass


class ValidationError(RuleVaultError):
    """Raised when caller input is rejected before any work is done."""

    def __init__(self, message: str, errors: Optional[list[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []


class OracleError(RuleVaultError):
    """Raised when the external agent fails or reports a non-success status."""

    pass


class AuthenticationError(OracleError):
    """Raised when the external agent rejects the configured API key."""

    pass
