from __future__ import annotations

import logging

from .errors import PersistenceFailure
from .models import CredentialRecord
from .stores import ReservationStore

logger = logging.getLogger(__name__)


class CalendarOwnerRegistry:
    """Process-wide "latest identity": the one Google account whose calendar mirrors bookings.

    Set on every successful OAuth callback, read by every sync call, cleared on
    logout. Logout keeps the credential record itself so a later login by the
    same account simply overwrites it.
    """

    def __init__(self, store: ReservationStore) -> None:
        self.store = store

    def remember(self, credential: CredentialRecord) -> None:
        self.store.put_credential(credential)
        self.store.set_latest_identity(credential.email)
        logger.info("Calendar owner set to %s", credential.email)

    def forget(self) -> None:
        self.store.clear_latest_identity()
        logger.info("Calendar owner cleared")

    def latest(self) -> CredentialRecord | None:
        try:
            email = self.store.get_latest_identity()
            if not email:
                return None
            return self.store.get_credential(email)
        except PersistenceFailure as error:
            logger.warning("Could not load latest identity: %s", error)
            return None

    def resolve(self, session_email: str | None = None) -> CredentialRecord | None:
        """Credential used for calendar sync: session user, then latest identity, then none."""
        if session_email:
            try:
                credential = self.store.get_credential(session_email)
            except PersistenceFailure as error:
                logger.warning("Could not load credential for session user %s: %s", session_email, error)
                credential = None
            if credential is not None:
                return credential
        return self.latest()
