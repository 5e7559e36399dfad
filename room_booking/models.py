from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    name: str
    email: str
    date: str
    start_time: str
    end_time: str
    duration: int
    created_at: datetime
    purpose: str | None = None
    google_event_id: str | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.reservation_id,
            "name": self.name,
            "email": self.email,
            "date": self.date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "purpose": self.purpose,
            "googleEventId": self.google_event_id,
            "created_at": _format_timestamp(self.created_at),
        }
        if self.updated_at is not None:
            payload["updated_at"] = _format_timestamp(self.updated_at)
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        created_at = _parse_timestamp(data.get("created_at"))
        if created_at is None:
            raise ValueError("created_at is required")
        return ReservationRecord(
            reservation_id=str(data["id"]),
            name=str(data["name"]),
            email=str(data["email"]),
            date=str(data["date"]),
            start_time=str(data["startTime"]),
            end_time=str(data["endTime"]),
            duration=int(data["duration"]),
            created_at=created_at,
            purpose=(str(data["purpose"]) if data.get("purpose") is not None else None),
            google_event_id=(str(data["googleEventId"]) if data.get("googleEventId") else None),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )

    def sort_key(self) -> tuple[str, str]:
        return (self.date, self.start_time)


@dataclass(frozen=True)
class CredentialRecord:
    """The authenticated Google account and its OAuth token bundle.

    ``tokens`` is opaque to everything except the calendar adapter:
    ``access_token``, ``refresh_token``, ``expiry``, ``token_uri`` and ``scopes``.
    """

    email: str
    name: str | None
    tokens: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "email": self.email,
            "name": self.name,
            "google_tokens": dict(self.tokens),
            "created_at": _format_timestamp(self.created_at),
        }
        if self.updated_at is not None:
            payload["updated_at"] = _format_timestamp(self.updated_at)
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "CredentialRecord":
        tokens = data.get("google_tokens") or {}
        if not isinstance(tokens, dict):
            raise ValueError("google_tokens must be a mapping")
        return CredentialRecord(
            email=str(data["email"]),
            name=(str(data["name"]) if data.get("name") is not None else None),
            tokens=dict(tokens),
            created_at=_parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )

    def public_profile(self) -> dict[str, str | None]:
        return {"email": self.email, "name": self.name}
