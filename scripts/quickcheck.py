from __future__ import annotations

from datetime import date, timedelta
import os
import traceback

from room_booking import ReservationRequest
from room_booking.config import config as config_by_name
from room_booking.web_app import build_service


def main() -> int:
    print("[INFO] Room Booking Quick Check")

    config_class = config_by_name[os.environ.get("FLASK_ENV", "development")]
    settings = {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}
    service = build_service(settings)

    description = service.store.describe()
    print(f"[OK] Store backend: {description.get('backend')} (healthy: {description.get('healthy')})")
    print(f"[OK] Reservations: {description.get('reservations', 'n/a')}, users: {description.get('users', 'n/a')}")
    print(f"[OK] Calendar sync: {'enabled' if service.calendar is not None else 'disabled'}")

    probe_date = (date.today() + timedelta(days=365)).isoformat()
    availability = service.check_availability(probe_date, "23:00", "23:30")
    if not availability.available:
        print(f"[WARN] Probe slot {probe_date} 23:00-23:30 is taken, skipping round trip")
        return 0

    outcome = service.create_reservation(
        ReservationRequest(
            name="Quick Check",
            email="quickcheck@example.com",
            date=probe_date,
            start_time="23:00",
            end_time="23:30",
            purpose="Store round trip probe",
        )
    )
    if outcome.reservation is None:
        print("[ERROR] Probe reservation was rejected")
        return 1
    print(f"[OK] Probe reservation created: {outcome.reservation.reservation_id}")

    listed = [record.reservation_id for record in service.list_reservations(probe_date)]
    if outcome.reservation.reservation_id not in listed:
        print("[ERROR] Probe reservation not visible in listing")
        return 1

    service.delete_reservation(outcome.reservation.reservation_id)
    print("[OK] Probe reservation cancelled")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
