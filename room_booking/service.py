from __future__ import annotations

from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
import logging
import threading
from typing import Any, Callable, Iterator, Mapping
from uuid import uuid4

from .availability import AvailabilityResult, check_availability, find_conflicts
from .broadcast import RESERVATION_CREATED, RESERVATION_DELETED, RESERVATION_UPDATED, EventBroadcaster
from .calendar_sync import CalendarSync
from .errors import ExternalSyncFailure, NotFound, PersistenceFailure, ValidationError
from .identity import CalendarOwnerRegistry
from .models import CredentialRecord, ReservationRecord, utc_now
from .slots import duration_minutes, is_public_holiday, parse_date, parse_time
from .stores import ReservationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationRequest:
    name: str
    email: str
    date: str
    start_time: str
    end_time: str
    purpose: str | None = None

    @staticmethod
    def from_payload(payload: Mapping[str, Any]) -> "ReservationRequest":
        def _text(key: str) -> str:
            value = payload.get(key)
            return "" if value is None else str(value).strip()

        purpose = _text("purpose")
        return ReservationRequest(
            name=_text("name"),
            email=_text("email"),
            date=_text("date"),
            start_time=_text("startTime"),
            end_time=_text("endTime"),
            purpose=purpose or None,
        )


@dataclass(frozen=True)
class BookingOutcome:
    reservation: ReservationRecord | None
    conflicts: list[ReservationRecord] = field(default_factory=list)
    calendar_added: bool = False

    @property
    def created(self) -> bool:
        return self.reservation is not None

    def to_dict(self) -> dict[str, Any]:
        if self.reservation is None:
            return {
                "error": "Time slot conflicts with an existing reservation",
                "available": False,
                "conflicts": [record.to_dict() for record in self.conflicts],
            }
        return {**self.reservation.to_dict(), "googleCalendarAdded": self.calendar_added}


@dataclass(frozen=True)
class UpdateOutcome:
    reservation: ReservationRecord | None
    conflicts: list[ReservationRecord] = field(default_factory=list)
    calendar_updated: bool = False

    @property
    def updated(self) -> bool:
        return self.reservation is not None

    def to_dict(self) -> dict[str, Any]:
        if self.reservation is None:
            return {
                "error": "Time slot conflicts with an existing reservation",
                "available": False,
                "conflicts": [record.to_dict() for record in self.conflicts],
            }
        return {**self.reservation.to_dict(), "googleCalendarUpdated": self.calendar_updated}


class ReservationService:
    """Validate, check, persist, mirror and announce reservation changes.

    Availability check and write run under a per-date lock so two requests in
    this process cannot both book an overlapping slot.
    """

    def __init__(
        self,
        store: ReservationStore,
        calendar: CalendarSync | None = None,
        broadcaster: EventBroadcaster | None = None,
        identity: CalendarOwnerRegistry | None = None,
        holiday_country: str | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.store = store
        self.calendar = calendar
        self.broadcaster = broadcaster or EventBroadcaster()
        self.identity = identity or CalendarOwnerRegistry(store)
        self.holiday_country = holiday_country or None
        self.clock = clock or utc_now
        self.id_factory = id_factory or (lambda: str(uuid4()))
        self._date_locks: dict[str, threading.Lock] = {}
        self._date_locks_guard = threading.Lock()

    def _date_lock(self, date: str) -> threading.Lock:
        with self._date_locks_guard:
            lock = self._date_locks.get(date)
            if lock is None:
                lock = self._date_locks[date] = threading.Lock()
            return lock

    @contextmanager
    def _record_lock(self, reservation_id: str, *extra_dates: str) -> Iterator[ReservationRecord]:
        """Hold the date locks covering a stored reservation and yield its current state."""
        record = self._load_for_write(reservation_id)
        while True:
            with ExitStack() as stack:
                for date in sorted({record.date, *extra_dates}):
                    stack.enter_context(self._date_lock(date))
                current = self._load_for_write(reservation_id)
                if current.date == record.date:
                    yield current
                    return
            # Moved to another date before the locks were taken.
            record = current

    def _load_for_write(self, reservation_id: str) -> ReservationRecord:
        record = self.store.get_reservation_for_write(reservation_id) if reservation_id else None
        if record is None:
            raise NotFound("Reservation not found")
        return record

    def validate(self, request: ReservationRequest) -> int:
        missing = [
            label
            for label, value in (
                ("name", request.name),
                ("email", request.email),
                ("date", request.date),
                ("startTime", request.start_time),
                ("endTime", request.end_time),
            )
            if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if "@" not in request.email:
            raise ValidationError("email must be a valid email address")

        day = parse_date(request.date)
        duration = duration_minutes(request.start_time, request.end_time)
        if self.holiday_country and is_public_holiday(day, self.holiday_country):
            raise ValidationError(f"The room is closed on public holidays ({request.date})")
        return duration

    def list_reservations(self, date: str | None = None) -> list[ReservationRecord]:
        if date:
            parse_date(date)
            records = self.store.list_reservations_by_date(date)
        else:
            records = self.store.list_reservations()
        return sorted(records, key=ReservationRecord.sort_key)

    def get_reservation(self, reservation_id: str) -> ReservationRecord:
        record = self.store.get_reservation(reservation_id) if reservation_id else None
        if record is None:
            raise NotFound("Reservation not found")
        return record

    def check_availability(
        self,
        date: str,
        start_time: str,
        end_time: str,
        exclude_id: str | None = None,
    ) -> AvailabilityResult:
        return check_availability(self.store, date, start_time, end_time, exclude_id)

    def create_reservation(self, request: ReservationRequest, session_email: str | None = None) -> BookingOutcome:
        duration = self.validate(request)

        with self._date_lock(request.date):
            availability = self.check_availability(request.date, request.start_time, request.end_time)
            if not availability.available:
                logger.info(
                    "Rejected booking %s %s-%s: %d conflict(s)",
                    request.date,
                    request.start_time,
                    request.end_time,
                    len(availability.conflicts),
                )
                return BookingOutcome(reservation=None, conflicts=availability.conflicts)

            record = ReservationRecord(
                reservation_id=self.id_factory(),
                name=request.name,
                email=request.email,
                date=request.date,
                start_time=request.start_time,
                end_time=request.end_time,
                duration=duration,
                purpose=request.purpose,
                created_at=self.clock(),
            )
            self.store.put_reservation(record)
            logger.info("Reservation %s saved to %s store", record.reservation_id, self.store.name)

        record, calendar_added = self._mirror_new_reservation(record, session_email)
        self._broadcast(RESERVATION_CREATED, record.to_dict())
        return BookingOutcome(reservation=record, calendar_added=calendar_added)

    def update_reservation(
        self,
        reservation_id: str,
        request: ReservationRequest,
        session_email: str | None = None,
    ) -> UpdateOutcome:
        duration = self.validate(request)

        with self._record_lock(reservation_id, request.date) as current:
            conflicts = find_conflicts(
                request.start_time,
                request.end_time,
                self.store.list_reservations_by_date(request.date),
                exclude_id=reservation_id,
            )
            if conflicts:
                return UpdateOutcome(reservation=None, conflicts=conflicts)

            updated = replace(
                current,
                name=request.name,
                email=request.email,
                date=request.date,
                start_time=request.start_time,
                end_time=request.end_time,
                duration=duration,
                purpose=request.purpose,
                updated_at=self.clock(),
            )
            self.store.put_reservation(updated)
            logger.info("Reservation %s updated", reservation_id)

        calendar_updated = False
        if updated.google_event_id:
            calendar_updated = self._best_effort(
                "update",
                session_email,
                lambda calendar, credential: calendar.update_event(credential, updated.google_event_id, updated),
            )

        self._broadcast(RESERVATION_UPDATED, updated.to_dict())
        return UpdateOutcome(reservation=updated, calendar_updated=calendar_updated)

    def delete_reservation(self, reservation_id: str, session_email: str | None = None) -> ReservationRecord:
        record = self._load_for_write(reservation_id)
        if record.google_event_id:
            self._discard_event(record.google_event_id, session_email)

        with self._record_lock(reservation_id) as current:
            if not self.store.delete_reservation(reservation_id):
                raise NotFound("Reservation not found")
        # An event attached while the first delete was in flight.
        if current.google_event_id and current.google_event_id != record.google_event_id:
            self._discard_event(current.google_event_id, session_email)
        logger.info("Reservation %s deleted from %s store", reservation_id, self.store.name)

        self._broadcast(RESERVATION_DELETED, {"id": reservation_id})
        return record

    def _mirror_new_reservation(
        self,
        record: ReservationRecord,
        session_email: str | None,
    ) -> tuple[ReservationRecord, bool]:
        created: list[tuple[CredentialRecord, str]] = []
        added = self._best_effort(
            "create",
            session_email,
            lambda calendar, credential: created.append((credential, calendar.create_event(credential, record))),
        )
        if not added:
            return record, False

        owner, event_id = created[0]
        try:
            with self._record_lock(record.reservation_id) as current:
                synced = replace(current, google_event_id=event_id)
                self.store.put_reservation(synced)
        except NotFound:
            logger.info("Reservation %s was deleted during calendar sync", record.reservation_id)
            self._discard_event(event_id, session_email, owner)
            return record, False
        except PersistenceFailure as error:
            logger.error("Could not attach calendar event %s to %s: %s", event_id, record.reservation_id, error)
            self._discard_event(event_id, session_email, owner)
            return record, False

        logger.info("Google Calendar event %s created for %s", event_id, record.reservation_id)
        if synced.updated_at != record.updated_at:
            # Updated while the event was being created; bring the event in line.
            self._best_effort(
                "update",
                session_email,
                lambda calendar, credential: calendar.update_event(credential, event_id, synced),
                owner,
            )
        return synced, True

    def _discard_event(
        self,
        event_id: str,
        session_email: str | None,
        owner: CredentialRecord | None = None,
    ) -> bool:
        return self._best_effort(
            "delete",
            session_email,
            lambda calendar, credential: calendar.delete_event(credential, event_id),
            owner,
        )

    def _best_effort(
        self,
        action: str,
        session_email: str | None,
        operation: Callable[[CalendarSync, CredentialRecord], Any],
        credential: CredentialRecord | None = None,
    ) -> bool:
        if self.calendar is None:
            logger.debug("Calendar sync disabled, skipping %s", action)
            return False

        if credential is None:
            credential = self.identity.resolve(session_email)
        if credential is None:
            logger.info("No authenticated calendar owner, skipping calendar %s", action)
            return False

        try:
            operation(self.calendar, credential)
        except ExternalSyncFailure as error:
            logger.warning("Calendar %s failed: %s", action, error)
            return False
        except Exception:
            logger.exception("Calendar %s failed unexpectedly", action)
            return False
        return True

    def _broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        try:
            self.broadcaster.publish(event_type, data)
        except Exception:
            logger.exception("Broadcast of %s failed", event_type)
