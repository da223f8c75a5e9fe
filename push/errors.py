class PushError(Exception):
    """Base class for every push lifecycle error."""


class Unsupported(PushError):
    """The device lacks a background context, push or notification capability.

    Callers hide the feature instead of surfacing this to the user.
    """


class PermissionDenied(PushError):
    """The user declined notifications. Terminal for the session."""


class KeyUnavailable(PushError):
    """Signing material could not be obtained."""


class SubscriptionConflict(PushError):
    """The device could not create a push subscription for the current key."""


class Forbidden(PushError):
    """The caller is not allowed to broadcast."""


class PlatformError(PushError):
    """Raised by device platform adapters when a push primitive fails."""


class DeliveryFailure(PushError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
