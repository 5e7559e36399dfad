from .availability import AvailabilityResult, check_availability, find_conflicts
from .broadcast import EventBroadcaster
from .calendar_sync import CalendarSync, GoogleCalendarSync
from .errors import (
	ExternalSyncFailure,
	InvalidTimeFormat,
	NotFound,
	PersistenceFailure,
	ReservationError,
	StoreUnavailable,
	ValidationError,
)
from .identity import CalendarOwnerRegistry
from .models import CredentialRecord, ReservationRecord
from .service import BookingOutcome, ReservationRequest, ReservationService, UpdateOutcome
from .slots import duration_minutes, has_time_overlap, parse_slot
from .stores import FallbackStore, MemoryStore, RedisStore, ReservationStore, YamlFileStore, build_store

__all__ = [
	"AvailabilityResult",
	"check_availability",
	"find_conflicts",
	"EventBroadcaster",
	"CalendarSync",
	"GoogleCalendarSync",
	"ExternalSyncFailure",
	"InvalidTimeFormat",
	"NotFound",
	"PersistenceFailure",
	"ReservationError",
	"StoreUnavailable",
	"ValidationError",
	"CalendarOwnerRegistry",
	"CredentialRecord",
	"ReservationRecord",
	"BookingOutcome",
	"ReservationRequest",
	"ReservationService",
	"UpdateOutcome",
	"duration_minutes",
	"has_time_overlap",
	"parse_slot",
	"FallbackStore",
	"MemoryStore",
	"RedisStore",
	"ReservationStore",
	"YamlFileStore",
	"build_store",
]
