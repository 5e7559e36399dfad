from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Mapping

from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from .calendar_sync import CALENDAR_SCOPE, TOKEN_URI
from .models import CredentialRecord, utc_now

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
SCOPES = [
    CALENDAR_SCOPE,
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "openid",
]


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str
    code_verifier: str | None


class GoogleOAuthClient:
    """Authorization-code login for the account that owns the shared calendar."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    def _flow(self, state: str | None = None, code_verifier: str | None = None) -> Flow:
        return Flow.from_client_config(
            {
                "web": {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "auth_uri": AUTH_URI,
                    "token_uri": TOKEN_URI,
                    "redirect_uris": [self.redirect_uri],
                }
            },
            scopes=SCOPES,
            redirect_uri=self.redirect_uri,
            state=state,
            code_verifier=code_verifier,
            autogenerate_code_verifier=code_verifier is None,
        )

    def authorization_request(self) -> AuthorizationRequest:
        flow = self._flow()
        # offline + consent so Google issues a refresh token every time
        url, state = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
        )
        return AuthorizationRequest(url=url, state=state, code_verifier=flow.code_verifier)

    def exchange_code(self, code: str, state: str | None = None, code_verifier: str | None = None) -> CredentialRecord:
        flow = self._flow(state=state, code_verifier=code_verifier)
        flow.fetch_token(code=code)
        credentials = flow.credentials
        logger.info("OAuth tokens obtained")

        profile = self.fetch_profile(credentials)
        email = profile.get("email")
        if not email:
            raise ValueError("Google account did not return an email address")

        return CredentialRecord(
            email=str(email),
            name=profile.get("name"),
            tokens={
                "access_token": credentials.token,
                "refresh_token": credentials.refresh_token,
                "expiry": credentials.expiry.isoformat() if credentials.expiry else None,
                "token_uri": credentials.token_uri,
                "scopes": list(credentials.scopes or SCOPES),
            },
            created_at=utc_now(),
        )

    def fetch_profile(self, credentials: Any) -> dict[str, Any]:
        service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
        return service.userinfo().get().execute()


def resolve_redirect_uri(environ: Mapping[str, str], port: int | str = 3000) -> str:
    explicit = environ.get("GOOGLE_REDIRECT_URI")
    if explicit:
        return explicit
    vercel_url = environ.get("VERCEL_URL")
    if vercel_url:
        return f"https://{vercel_url}/auth/google/callback"
    return f"http://localhost:{port}/auth/google/callback"


def build_oauth_client(config: Mapping[str, Any]) -> GoogleOAuthClient | None:
    client_id = config.get("GOOGLE_CLIENT_ID")
    client_secret = config.get("GOOGLE_CLIENT_SECRET")
    if not client_id or not client_secret:
        return None
    return GoogleOAuthClient(str(client_id), str(client_secret), str(config.get("GOOGLE_REDIRECT_URI")))
