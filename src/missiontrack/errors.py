from abc import ABC


class ConfigurationError(Exception):
    """Raised at startup when required configuration is missing or invalid.

    Not a UserError: the process must not accept traffic after this.
    """


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class AuthenticationError(UserError):
    """Raised when authentication fails."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class TokenError(AuthenticationError):
    """Base class for token verification failures.

    Every subclass shares the same public message so that callers cannot
    tell an expired token from a forged one. The internal ``reason`` is
    meant for logging only.
    """

    reason = "invalid"

    def __init__(self) -> None:
        super().__init__("Invalid or expired token")


class InvalidSignatureError(TokenError):
    """Token signature does not match the expected secret."""

    reason = "invalid_signature"


class TokenExpiredError(TokenError):
    """Token is past its expiry time."""

    reason = "expired"


class MalformedTokenError(TokenError):
    """Token is not a well-formed signed structure or lacks required claims."""

    reason = "malformed"


class AccessDeniedError(UserError):
    """Raised when a user tries to access a resource they do not have permission for."""


class ValidationError(UserError):
    """Raised when user input fails validation."""


class InvalidGeometryError(ValidationError):
    """Raised when a fix has malformed coordinates."""


class MissionClosedError(UserError):
    """Raised when writing positions to a closed mission."""

    def __init__(self, message: str = "Mission is closed") -> None:
        super().__init__(message)
