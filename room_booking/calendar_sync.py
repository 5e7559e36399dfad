from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable, Mapping

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
import httplib2

from .errors import ExternalSyncFailure
from .models import CredentialRecord, ReservationRecord
from .slots import parse_slot

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
_GONE_STATUSES = {404, 410}


class CalendarSync:
    """Mirrors reservations into an external calendar.

    Implementations raise ``ExternalSyncFailure`` and nothing else; callers
    treat every failure as non-fatal.
    """

    def create_event(self, credential: CredentialRecord, reservation: ReservationRecord) -> str:
        raise NotImplementedError

    def update_event(self, credential: CredentialRecord, event_id: str, reservation: ReservationRecord) -> None:
        raise NotImplementedError

    def delete_event(self, credential: CredentialRecord, event_id: str) -> None:
        raise NotImplementedError


class GoogleCalendarSync(CalendarSync):
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        calendar_id: str = "primary",
        timezone: str = "America/Los_Angeles",
        room_name: str = "Film Room",
        location: str | None = None,
        timeout_seconds: float = 10.0,
        service_factory: Callable[[Credentials], Any] | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.calendar_id = calendar_id
        self.timezone = timezone
        self.room_name = room_name
        self.location = location
        self.timeout_seconds = timeout_seconds
        self._service_factory = service_factory or self._build_service

    def _build_service(self, credentials: Credentials) -> Any:
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout_seconds))
        return build("calendar", "v3", http=http, cache_discovery=False)

    def build_credentials(self, credential: CredentialRecord) -> Credentials:
        tokens = credential.tokens
        if not tokens.get("access_token") and not tokens.get("refresh_token"):
            raise ExternalSyncFailure(f"No usable OAuth tokens stored for {credential.email}")

        expiry = tokens.get("expiry")
        return Credentials(
            token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            token_uri=tokens.get("token_uri") or TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=tokens.get("scopes") or [CALENDAR_SCOPE],
            # google-auth compares expiry as naive UTC
            expiry=datetime.fromisoformat(str(expiry)).replace(tzinfo=None) if expiry else None,
        )

    def build_event_body(self, reservation: ReservationRecord) -> dict[str, Any]:
        start = parse_slot(reservation.date, reservation.start_time, self.timezone)
        end = parse_slot(reservation.date, reservation.end_time, self.timezone)
        body: dict[str, Any] = {
            "summary": f"{self.room_name} - {reservation.name}",
            "description": reservation.purpose or f"{self.room_name} reservation",
            "start": {"dateTime": start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.timezone},
            "attendees": [{"email": reservation.email}],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 30},
                    {"method": "popup", "minutes": 10},
                ],
            },
        }
        if self.location:
            body["location"] = self.location
        return body

    def _execute(self, action: str, credential: CredentialRecord, call: Callable[[Any], Any]) -> Any:
        try:
            service = self._service_factory(self.build_credentials(credential))
            return call(service)
        except HttpError as error:
            raise ExternalSyncFailure(f"Google Calendar {action} failed with HTTP {error.resp.status}") from error
        except GoogleAuthError as error:
            raise ExternalSyncFailure(f"Google Calendar {action} failed to authenticate: {error}") from error
        except (httplib2.HttpLib2Error, OSError) as error:
            raise ExternalSyncFailure(f"Google Calendar {action} failed: {error}") from error

    def create_event(self, credential: CredentialRecord, reservation: ReservationRecord) -> str:
        body = self.build_event_body(reservation)
        created = self._execute(
            "insert",
            credential,
            lambda service: service.events()
            .insert(calendarId=self.calendar_id, body=body, sendUpdates="all")
            .execute(),
        )
        event_id = (created or {}).get("id")
        if not event_id:
            raise ExternalSyncFailure("Google Calendar insert returned no event id")
        return str(event_id)

    def update_event(self, credential: CredentialRecord, event_id: str, reservation: ReservationRecord) -> None:
        body = self.build_event_body(reservation)
        patch = {key: body[key] for key in ("summary", "description", "start", "end", "attendees")}
        self._execute(
            "patch",
            credential,
            lambda service: service.events()
            .patch(calendarId=self.calendar_id, eventId=event_id, body=patch, sendUpdates="all")
            .execute(),
        )

    def delete_event(self, credential: CredentialRecord, event_id: str) -> None:
        def _delete(service: Any) -> None:
            try:
                service.events().delete(calendarId=self.calendar_id, eventId=event_id, sendUpdates="all").execute()
            except HttpError as error:
                if error.resp.status in _GONE_STATUSES:
                    logger.info("Calendar event %s already gone", event_id)
                    return
                raise

        self._execute("delete", credential, _delete)


def build_calendar_sync(config: Mapping[str, Any]) -> GoogleCalendarSync | None:
    client_id = config.get("GOOGLE_CLIENT_ID")
    client_secret = config.get("GOOGLE_CLIENT_SECRET")
    if not client_id or not client_secret:
        logger.info("Google OAuth client not configured, calendar sync disabled")
        return None
    return GoogleCalendarSync(
        client_id=str(client_id),
        client_secret=str(client_secret),
        calendar_id=str(config.get("GOOGLE_CALENDAR_ID") or "primary"),
        timezone=str(config.get("TIMEZONE") or "America/Los_Angeles"),
        room_name=str(config.get("ROOM_NAME") or "Film Room"),
        location=config.get("ROOM_LOCATION"),
        timeout_seconds=float(config.get("CALENDAR_SYNC_TIMEOUT_SECONDS", 10.0)),
    )
