class ReservationError(Exception):
    """Base class for errors raised by the reservation system."""


class ValidationError(ReservationError, ValueError):
    pass


class InvalidTimeFormat(ValidationError):
    pass


class NotFound(ReservationError, LookupError):
    pass


class PersistenceFailure(ReservationError, RuntimeError):
    pass


class StoreUnavailable(PersistenceFailure):
    """Raised by a single backend when it cannot serve a call."""


class ExternalSyncFailure(ReservationError):
    """Calendar mirroring failed. Never fatal to the local operation."""
