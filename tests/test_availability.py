import unittest

from room_booking import MemoryStore, ValidationError, check_availability, find_conflicts

from tests.helpers import make_reservation


class TestFindConflicts(unittest.TestCase):
    def test_returns_every_overlapping_reservation(self) -> None:
        existing = [
            make_reservation("late", start_time="15:00", end_time="16:00"),
            make_reservation("early", start_time="13:00", end_time="14:10"),
            make_reservation("apart", start_time="17:00", end_time="18:00"),
        ]

        conflicts = find_conflicts("14:00", "15:30", existing)

        self.assertEqual([record.reservation_id for record in conflicts], ["early", "late"])

    def test_exclude_id_skips_the_reservation_being_edited(self) -> None:
        existing = [make_reservation("self", start_time="14:00", end_time="15:00")]

        self.assertEqual(find_conflicts("14:30", "15:30", existing, exclude_id="self"), [])


class TestCheckAvailability(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStore()
        self.store.put_reservation(make_reservation("first", start_time="14:00", end_time="14:30"))

    def test_overlapping_slot_is_unavailable(self) -> None:
        result = check_availability(self.store, "2024-06-10", "14:15", "14:45")

        self.assertFalse(result.available)
        self.assertEqual([record.reservation_id for record in result.conflicts], ["first"])
        self.assertEqual(result.to_dict()["conflicts"][0]["id"], "first")

    def test_touching_slot_is_available(self) -> None:
        result = check_availability(self.store, "2024-06-10", "14:30", "15:00")

        self.assertTrue(result.available)
        self.assertEqual(result.conflicts, [])

    def test_other_dates_are_not_considered(self) -> None:
        result = check_availability(self.store, "2024-06-11", "14:00", "14:30")

        self.assertTrue(result.available)

    def test_exclude_id_allows_rechecking_own_slot(self) -> None:
        result = check_availability(self.store, "2024-06-10", "14:00", "14:30", exclude_id="first")

        self.assertTrue(result.available)

    def test_rejects_inverted_interval(self) -> None:
        with self.assertRaises(ValidationError):
            check_availability(self.store, "2024-06-10", "15:00", "14:00")

    def test_rejects_malformed_date(self) -> None:
        with self.assertRaises(ValidationError):
            check_availability(self.store, "June 10", "14:00", "15:00")


if __name__ == "__main__":
    unittest.main()
