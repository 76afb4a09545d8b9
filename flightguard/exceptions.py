# flightguard/exceptions.py
#
# Error taxonomy shared by the weather, reschedule and sweep code


class FlightGuardError(Exception):
    """Base exception for flightguard errors."""
    pass


class ConfigurationError(FlightGuardError):
    """A collaborator was built without the credential it needs."""
    pass


class UpstreamError(FlightGuardError):
    """
    An external service failed or timed out.

    Transient by nature, but never retried here: the caller decides.
    """

    def __init__(self, message: str, upstream: str = None):
        super().__init__(message)
        self.upstream = upstream


class ValidationError(FlightGuardError):
    """Generated payload or candidate failed validation."""
    pass


class ConflictError(FlightGuardError):
    """Operation conflicts with existing state (open request, double booking, concurrent update)."""
    pass


class InvalidStateError(ConflictError):
    """Transition not allowed from the current status."""
    pass


class AuthorizationError(FlightGuardError):
    """Actor is not allowed to act on this booking."""
    pass


class NotFoundError(FlightGuardError):
    """Unknown booking, request or user."""
    pass


class InsufficientOptionsError(FlightGuardError):
    """Fewer than the required number of reschedule options survived validation."""

    def __init__(self, message: str, valid_count: int = 0, required: int = 3):
        super().__init__(message)
        self.valid_count = valid_count
        self.required = required
