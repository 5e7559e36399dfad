from __future__ import annotations

import logging
import os
import secrets
from typing import Any

from flask import Flask, Response, jsonify, redirect, render_template, request, session, stream_with_context

from .broadcast import EventBroadcaster
from .calendar_sync import build_calendar_sync
from .config import config as config_by_name
from .errors import NotFound, PersistenceFailure, ValidationError
from .identity import CalendarOwnerRegistry
from .oauth import GoogleOAuthClient, build_oauth_client
from .service import ReservationRequest, ReservationService
from .stores import build_store

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"
CONTENT_SECURITY_POLICY = (
    "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; font-src 'self'; connect-src 'self'"
)


def build_service(app_config: Any, broadcaster: EventBroadcaster | None = None) -> ReservationService:
    store = build_store(app_config)
    return ReservationService(
        store=store,
        calendar=build_calendar_sync(app_config),
        broadcaster=broadcaster or EventBroadcaster(heartbeat_seconds=float(app_config.get("SSE_HEARTBEAT_SECONDS", 25))),
        identity=CalendarOwnerRegistry(store),
        holiday_country=app_config.get("HOLIDAY_COUNTRY"),
    )


def create_app(
    config_name: str | None = None,
    service: ReservationService | None = None,
    oauth_client: GoogleOAuthClient | None = None,
) -> Flask:
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    config_class = config_by_name[config_name]
    if config_name == "production":
        config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_logging(app)

    reservations = service or build_service(app.config)
    oauth = oauth_client if oauth_client is not None else build_oauth_client(app.config)
    app.extensions["reservation_service"] = reservations
    logger.info("Reservation store backend: %s", reservations.store.name)

    def _session_email() -> str | None:
        user = session.get(SESSION_USER_KEY) or {}
        return user.get("email")

    @app.after_request
    def add_security_headers(response: Any) -> Any:
        origin = request.headers.get("Origin")
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
        return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError) -> Any:
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(NotFound)
    def handle_not_found(error: NotFound) -> Any:
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(PersistenceFailure)
    def handle_persistence_failure(error: PersistenceFailure) -> Any:
        logger.error("Persistence failure on %s %s: %s", request.method, request.path, error)
        return jsonify({"error": "Reservation storage is unavailable, please try again"}), 500

    @app.get("/")
    def index() -> str:
        return render_template("index.html", room_name=app.config.get("ROOM_NAME"))

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        date = str(request.args.get("date", "")).strip() or None
        records = reservations.list_reservations(date)
        return jsonify([record.to_dict() for record in records])

    @app.post("/api/check-availability")
    def check_availability() -> Any:
        payload = request.get_json(silent=True) or {}
        exclude_id = str(payload.get("excludeId") or "").strip() or None
        result = reservations.check_availability(
            str(payload.get("date", "")).strip(),
            str(payload.get("startTime", "")).strip(),
            str(payload.get("endTime", "")).strip(),
            exclude_id=exclude_id,
        )
        return jsonify(result.to_dict())

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        payload = request.get_json(silent=True) or {}
        outcome = reservations.create_reservation(ReservationRequest.from_payload(payload), session_email=_session_email())
        if not outcome.created:
            return jsonify(outcome.to_dict()), 409
        return jsonify(outcome.to_dict())

    @app.put("/api/reservations/<reservation_id>")
    def update_reservation(reservation_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        outcome = reservations.update_reservation(
            reservation_id,
            ReservationRequest.from_payload(payload),
            session_email=_session_email(),
        )
        if not outcome.updated:
            return jsonify(outcome.to_dict()), 409
        return jsonify(outcome.to_dict())

    @app.delete("/api/reservations/<reservation_id>")
    def delete_reservation(reservation_id: str) -> Any:
        reservations.delete_reservation(reservation_id, session_email=_session_email())
        return jsonify({"success": True})

    @app.get("/api/events")
    def event_stream() -> Response:
        broadcaster = reservations.broadcaster
        subscriber = broadcaster.subscribe()
        return Response(
            stream_with_context(broadcaster.stream(subscriber)),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.get("/auth/google")
    def google_login() -> Any:
        if oauth is None:
            return jsonify({"error": "Google OAuth is not configured"}), 503
        authorization = oauth.authorization_request()
        session["oauth_state"] = authorization.state
        session["oauth_code_verifier"] = authorization.code_verifier
        return redirect(authorization.url)

    @app.get("/auth/google/callback")
    def google_callback() -> Any:
        expected_state = session.pop("oauth_state", None)
        code_verifier = session.pop("oauth_code_verifier", None)
        code = request.args.get("code")
        state = request.args.get("state")

        if oauth is None or not code or request.args.get("error"):
            logger.warning("OAuth callback rejected: %s", request.args.get("error") or "missing code")
            return redirect("/?error=auth_failed")
        if expected_state and not secrets.compare_digest(str(expected_state), str(state or "")):
            logger.warning("OAuth callback state mismatch")
            return redirect("/?error=auth_failed")

        try:
            credential = oauth.exchange_code(code, state=state, code_verifier=code_verifier)
            reservations.identity.remember(credential)
        except Exception:
            logger.exception("OAuth callback failed")
            return redirect("/?error=auth_failed")

        session.permanent = True
        session[SESSION_USER_KEY] = credential.public_profile()
        logger.info("Authenticated %s", credential.email)
        return redirect("/?auth=success")

    @app.get("/auth/status")
    def auth_status() -> Any:
        user = session.get(SESSION_USER_KEY)
        if user:
            return jsonify({"authenticated": True, "user": {"email": user.get("email"), "name": user.get("name")}})

        latest = reservations.identity.latest()
        if latest is not None:
            session.permanent = True
            session[SESSION_USER_KEY] = latest.public_profile()
            return jsonify({"authenticated": True, "user": latest.public_profile()})

        return jsonify({"authenticated": False, "user": None})

    @app.post("/auth/logout")
    def logout() -> Any:
        # The credential record stays in the store; only the pointers go.
        reservations.identity.forget()
        session.clear()
        return jsonify({"success": True})

    @app.get("/debug/config")
    def debug_config() -> Any:
        return jsonify(
            {
                "redirectUri": app.config.get("GOOGLE_REDIRECT_URI"),
                "clientId": app.config.get("GOOGLE_CLIENT_ID"),
                "oauthConfigured": oauth is not None,
                "calendarSync": reservations.calendar is not None,
                "sessionUser": _session_email() or "none",
                "store": reservations.store.describe(),
                "realtime": {
                    "transport": "sse",
                    "endpoint": "/api/events",
                    "subscribers": reservations.broadcaster.subscriber_count,
                    "pollIntervalSeconds": app.config.get("POLL_INTERVAL_SECONDS"),
                },
            }
        )

    return app


def configure_logging(app: Flask) -> None:
    """Configure application logging."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    package_logger = logging.getLogger("room_booking")
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    app.logger.setLevel(level)


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=app.config["PORT"], debug=False, threaded=True)
