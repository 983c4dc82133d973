"""
Exceptions raised by the calendar client.
Token exchange failures are split by cause so callers can tell a dead provider from a rejected grant.
"""


class CalendarClientError(Exception):
    """Base exception for calendar client errors."""


class ConfigError(CalendarClientError):
    """Raised when required configuration is missing or malformed."""


class TokenExchangeError(CalendarClientError):
    """Base for failures talking to the OAuth2 token endpoint."""


class NetworkFailure(TokenExchangeError):
    """Provider unreachable or timed out."""


class ProviderRejected(TokenExchangeError):
    """Provider answered with a non-success status (e.g. invalid or expired refresh token)."""

    def __init__(self, status_code: int, error: str | None = None, error_description: str | None = None):
        self.status_code = status_code
        self.error = error
        self.error_description = error_description
        detail = error_description or error or "no error detail"
        super().__init__(f"Token endpoint returned {status_code}: {detail}")


class DecodeFailure(TokenExchangeError):
    """Token response body was not JSON or lacked required fields."""


class PersistenceError(CalendarClientError):
    """Reading or writing the persisted credential failed."""
