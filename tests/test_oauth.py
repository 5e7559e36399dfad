import unittest
from datetime import datetime
from unittest import mock
from urllib.parse import parse_qs, urlparse

from room_booking.oauth import SCOPES, GoogleOAuthClient, build_oauth_client, resolve_redirect_uri


class TestResolveRedirectUri(unittest.TestCase):
    def test_explicit_value_wins(self) -> None:
        environ = {"GOOGLE_REDIRECT_URI": "https://rooms.example.com/cb", "VERCEL_URL": "app.vercel.app"}

        self.assertEqual(resolve_redirect_uri(environ), "https://rooms.example.com/cb")

    def test_vercel_deployment(self) -> None:
        self.assertEqual(
            resolve_redirect_uri({"VERCEL_URL": "app.vercel.app"}),
            "https://app.vercel.app/auth/google/callback",
        )

    def test_localhost_uses_port(self) -> None:
        self.assertEqual(resolve_redirect_uri({}, 5000), "http://localhost:5000/auth/google/callback")


class TestGoogleOAuthClient(unittest.TestCase):
    def setUp(self) -> None:
        self.client = GoogleOAuthClient("client-id", "client-secret", "http://localhost:3000/auth/google/callback")

    def test_authorization_request_asks_for_offline_consent(self) -> None:
        authorization = self.client.authorization_request()

        query = parse_qs(urlparse(authorization.url).query)
        self.assertEqual(query["client_id"], ["client-id"])
        self.assertEqual(query["access_type"], ["offline"])
        self.assertEqual(query["prompt"], ["consent"])
        self.assertEqual(query["state"], [authorization.state])
        self.assertEqual(set(query["scope"][0].split()), set(SCOPES))
        self.assertTrue(authorization.code_verifier)
        self.assertIn("code_challenge", query)

    def test_exchange_code_builds_credential_record(self) -> None:
        flow = mock.MagicMock()
        flow.credentials.token = "access"
        flow.credentials.refresh_token = "refresh"
        flow.credentials.expiry = datetime(2024, 6, 1, 13, 0)
        flow.credentials.token_uri = "https://oauth2.googleapis.com/token"
        flow.credentials.scopes = SCOPES

        with mock.patch.object(GoogleOAuthClient, "_flow", return_value=flow) as make_flow, mock.patch.object(
            GoogleOAuthClient, "fetch_profile", return_value={"email": "owner@example.com", "name": "Owner"}
        ):
            credential = self.client.exchange_code("abc", state="state-123", code_verifier="verifier")

        make_flow.assert_called_once_with(state="state-123", code_verifier="verifier")
        flow.fetch_token.assert_called_once_with(code="abc")
        self.assertEqual(credential.email, "owner@example.com")
        self.assertEqual(credential.name, "Owner")
        self.assertEqual(credential.tokens["refresh_token"], "refresh")
        self.assertEqual(credential.tokens["expiry"], "2024-06-01T13:00:00")

    def test_exchange_code_requires_email(self) -> None:
        with mock.patch.object(GoogleOAuthClient, "_flow", return_value=mock.MagicMock()), mock.patch.object(
            GoogleOAuthClient, "fetch_profile", return_value={"name": "No Email"}
        ):
            with self.assertRaises(ValueError):
                self.client.exchange_code("abc")


class TestBuildOAuthClient(unittest.TestCase):
    def test_unconfigured_client_is_none(self) -> None:
        self.assertIsNone(build_oauth_client({"GOOGLE_CLIENT_ID": "id", "GOOGLE_CLIENT_SECRET": None}))

    def test_configured_client(self) -> None:
        client = build_oauth_client(
            {
                "GOOGLE_CLIENT_ID": "id",
                "GOOGLE_CLIENT_SECRET": "secret",
                "GOOGLE_REDIRECT_URI": "http://localhost:3000/auth/google/callback",
            }
        )

        self.assertEqual(client.redirect_uri, "http://localhost:3000/auth/google/callback")


if __name__ == "__main__":
    unittest.main()
