from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import ValidationError
from .models import ReservationRecord
from .slots import has_time_overlap, parse_date, parse_time
from .stores import ReservationStore


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicts: list[ReservationRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "conflicts": [record.to_dict() for record in self.conflicts],
        }


def find_conflicts(
    start_time: str,
    end_time: str,
    reservations: Iterable[ReservationRecord],
    exclude_id: str | None = None,
) -> list[ReservationRecord]:
    """Return every reservation whose slot overlaps ``[start_time, end_time)``.

    Callers pass reservations of a single date, so zero-padded ``HH:MM``
    strings compare the same way the instants would.
    """
    conflicts: list[ReservationRecord] = []
    for reservation in reservations:
        if exclude_id is not None and reservation.reservation_id == exclude_id:
            continue
        if reservation.start_time >= reservation.end_time:
            continue
        if has_time_overlap(start_time, end_time, reservation.start_time, reservation.end_time):
            conflicts.append(reservation)
    return sorted(conflicts, key=ReservationRecord.sort_key)


def check_availability(
    store: ReservationStore,
    date: str,
    start_time: str,
    end_time: str,
    exclude_id: str | None = None,
) -> AvailabilityResult:
    parse_date(date)
    parse_time(start_time)
    parse_time(end_time)
    if start_time >= end_time:
        raise ValidationError("End time must be after start time")

    conflicts = find_conflicts(start_time, end_time, store.list_reservations_by_date(date), exclude_id)
    return AvailabilityResult(available=not conflicts, conflicts=conflicts)
