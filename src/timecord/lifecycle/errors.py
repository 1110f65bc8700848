"""
Error taxonomy for lifecycle operations.

Every error carries a ``user_message`` that the Discord layer can show
ephemerally as-is. Conditional-update misses are not errors: they are
returned as ``ExpirationOutcome.ALREADY_TERMINAL`` or affected-row counts.
"""


class LifecycleError(Exception):
    """Base class for failures that are reported back to the acting user."""

    default_message = "Something went wrong."

    def __init__(self, user_message: str | None = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class EntityNotFound(LifecycleError):
    default_message = "That item could not be found."


class AlreadyTerminal(LifecycleError):
    default_message = "This has already ended."


class EntryConflict(LifecycleError):
    """A uniqueness rule rejected the write (duplicate entry, already quarantined)."""

    default_message = "You have already done that."


class Forbidden(LifecycleError):
    default_message = "You do not have permission to do that."


class UpstreamUnavailable(LifecycleError):
    """A Discord call failed. Never used to undo a state change that already happened."""

    default_message = "Discord did not accept the request. Please try again later."


class InvalidRequest(LifecycleError):
    default_message = "That request is not valid."
