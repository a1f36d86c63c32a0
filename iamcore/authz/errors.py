"""Authorization error taxonomy.

Only InvalidRequestError and AuthorizationCancelledError ever reach callers.
StorageUnavailableError and MalformedPolicyError are absorbed by the
aggregator and engine and surface in the audit log instead.
"""


class AuthorizationError(Exception):
    """Base class for authorization errors."""


class StorageUnavailableError(AuthorizationError):
    """A grant source could not be read."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(message or f"Grant source unavailable: {source}")


class MalformedPolicyError(AuthorizationError):
    """A stored policy document failed to parse or validate."""

    def __init__(self, message: str, policy_id: str | None = None):
        self.policy_id = policy_id
        super().__init__(message)


class InvalidRequestError(AuthorizationError):
    """The authorization request itself is malformed."""


class AuthorizationCancelledError(AuthorizationError):
    """The caller's timeout fired or the evaluation was cancelled."""
