from __future__ import annotations

import os
from typing import Any

from mcp.server.fastmcp import FastMCP

from room_booking import ReservationRequest, ReservationService
from room_booking.config import config as config_by_name
from room_booking.web_app import build_service

mcp = FastMCP(
    "Room Booking MCP Server",
    instructions="List, check and book the shared room through the room_booking service.",
    json_response=True,
)

_SERVICE: ReservationService | None = None


def get_service() -> ReservationService:
    global _SERVICE
    if _SERVICE is None:
        config_class = config_by_name[os.environ.get("FLASK_ENV", "development")]
        settings = {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}
        _SERVICE = build_service(settings)
    return _SERVICE


def use_service(service: ReservationService | None) -> None:
    global _SERVICE
    _SERVICE = service


@mcp.resource("reservation://room")
async def describe_room() -> dict[str, Any]:
    """Describe the bookable room and where reservations are stored."""
    service = get_service()
    return {"store": service.store.describe(), "calendar_sync": service.calendar is not None}


@mcp.tool()
def list_reservations(date: str | None = None) -> list[dict[str, Any]]:
    """Return reservations sorted by date and start time, optionally for one YYYY-MM-DD date."""
    return [record.to_dict() for record in get_service().list_reservations(date)]


@mcp.tool()
def check_availability(date: str, start_time: str, end_time: str) -> dict[str, Any]:
    """Check whether [start_time, end_time) on date is free. Times are HH:MM."""
    return get_service().check_availability(date, start_time, end_time).to_dict()


@mcp.tool()
def create_reservation(
    name: str,
    email: str,
    date: str,
    start_time: str,
    end_time: str,
    purpose: str | None = None,
) -> dict[str, Any]:
    """Book the room. Returns the reservation, or the conflicting reservations when the slot is taken."""
    request = ReservationRequest(
        name=name.strip(),
        email=email.strip(),
        date=date.strip(),
        start_time=start_time.strip(),
        end_time=end_time.strip(),
        purpose=(purpose or "").strip() or None,
    )
    return get_service().create_reservation(request).to_dict()


@mcp.tool()
def cancel_reservation(reservation_id: str) -> dict[str, Any]:
    """Cancel a reservation by id."""
    get_service().delete_reservation(reservation_id)
    return {"success": True}


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
