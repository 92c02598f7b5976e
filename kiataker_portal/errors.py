"""Error kinds raised by the portal services."""


class PortalError(Exception):
    """Base class for all portal errors."""
    pass


class ValidationError(PortalError):
    """Required input missing or outside the allowed set."""
    pass


class TransitionError(ValidationError):
    """A visit step was requested from the wrong stage."""
    pass


class AuthError(PortalError):
    """Credentials rejected or verification failed."""
    pass


class WriteError(PortalError):
    """A profile or visit write did not complete."""
    pass


class DispatchError(PortalError):
    """An email or one-time code could not be delivered."""
    pass


class NotFoundError(PortalError):
    """A profile or record does not exist."""
    pass


class ReadError(PortalError):
    """A profile or record could not be fetched from the backend."""
    pass
