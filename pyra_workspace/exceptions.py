"""Custom exceptions for Pyra Workspace."""


class SSRFProtectionError(ValueError):
    """Raised when a webhook URL points to a private or internal address.

    Webhook targets are admin supplied, so delivery must never be usable to
    reach loopback, link-local or RFC1918 services behind the server.
    """
    pass


class NotFoundError(Exception):
    """Raised when a requested record does not exist."""
    pass


class ValidationError(Exception):
    """Raised when a request is well formed but violates a business rule."""
    pass


class InvalidStatusTransitionError(ValidationError):
    """Raised when a document is moved to a status its current status forbids."""

    def __init__(self, current: str, requested: str, message: str):
        self.current = current
        self.requested = requested
        super().__init__(message)


class SequenceExhaustedError(Exception):
    """Raised when a document insert keeps colliding on its unique number.

    The generator itself never fails; this only surfaces when the unique
    constraint rejects every insert attempt the service makes.
    """

    def __init__(self, prefix: str, attempts: int):
        self.prefix = prefix
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique number for prefix '{prefix}' after {attempts} attempts"
        )
