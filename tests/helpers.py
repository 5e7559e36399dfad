from __future__ import annotations

from datetime import datetime, timezone
import fnmatch
import json
from typing import Any

import redis

from room_booking import CredentialRecord, ReservationRecord


def make_reservation(
    reservation_id: str = "r1",
    date: str = "2024-06-10",
    start_time: str = "14:00",
    end_time: str = "14:30",
    **overrides: Any,
) -> ReservationRecord:
    values: dict[str, Any] = {
        "reservation_id": reservation_id,
        "name": "Ada",
        "email": "ada@example.com",
        "date": date,
        "start_time": start_time,
        "end_time": end_time,
        "duration": 30,
        "created_at": datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return ReservationRecord(**values)


def make_credential(email: str = "owner@example.com", name: str = "Owner") -> CredentialRecord:
    return CredentialRecord(
        email=email,
        name=name,
        tokens={"access_token": "access", "refresh_token": "refresh", "expiry": None},
        created_at=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
    )


class FakeRedis:
    """Dict-backed stand-in for the few redis-py calls the store makes."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.fail = False
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.fail:
            raise redis.exceptions.ConnectionError("connection refused")

    def ping(self) -> bool:
        self._check()
        return True

    def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value
        return True

    def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    def mget(self, keys: list[str]) -> list[str | None]:
        self._check()
        return [self.data.get(key) for key in keys]

    def scan_iter(self, match: str = "*"):
        self._check()
        return iter([key for key in list(self.data) if fnmatch.fnmatch(key, match)])

    def put_json(self, key: str, payload: Any) -> None:
        self.data[key] = json.dumps(payload)


class RecordingCalendar:
    """Calendar adapter double that records calls and can be told to fail."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.created: list[tuple[str, str]] = []
        self.updated: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.next_id = 1

    def create_event(self, credential, reservation) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        event_id = f"evt-{self.next_id}"
        self.next_id += 1
        self.created.append((credential.email, reservation.reservation_id))
        return event_id

    def update_event(self, credential, event_id, reservation) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.updated.append((credential.email, event_id))

    def delete_event(self, credential, event_id) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.deleted.append((credential.email, event_id))
