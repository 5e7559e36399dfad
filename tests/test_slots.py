import unittest
from datetime import date, datetime, timedelta

from room_booking import InvalidTimeFormat, ValidationError, duration_minutes, has_time_overlap, parse_slot
from room_booking.slots import is_public_holiday


class TestTimeOverlap(unittest.TestCase):
    def setUp(self) -> None:
        self.exist_start = "14:00"
        self.exist_end = "14:30"

    def test_non_overlapping_before_passes(self) -> None:
        self.assertFalse(has_time_overlap("13:00", "13:59", self.exist_start, self.exist_end))

    def test_exactly_touching_boundary_passes(self) -> None:
        self.assertFalse(has_time_overlap("14:30", "15:00", self.exist_start, self.exist_end))
        self.assertFalse(has_time_overlap("13:30", "14:00", self.exist_start, self.exist_end))

    def test_partially_overlapping_fails(self) -> None:
        self.assertTrue(has_time_overlap("14:15", "14:45", self.exist_start, self.exist_end))

    def test_fully_contained_fails(self) -> None:
        self.assertTrue(has_time_overlap("14:05", "14:10", self.exist_start, self.exist_end))

    def test_overlap_is_symmetric(self) -> None:
        pairs = [
            (("09:00", "10:00"), ("09:30", "11:00")),
            (("09:00", "10:00"), ("10:00", "11:00")),
            (("09:00", "12:00"), ("10:00", "11:00")),
            (("09:00", "10:00"), ("11:00", "12:00")),
        ]
        for first, second in pairs:
            with self.subTest(first=first, second=second):
                self.assertEqual(has_time_overlap(*first, *second), has_time_overlap(*second, *first))

    def test_string_and_instant_comparison_agree(self) -> None:
        day = "2024-06-10"
        cases = [("14:15", "14:45"), ("14:30", "15:00"), ("13:00", "14:00"), ("13:59", "14:01")]
        for start, end in cases:
            with self.subTest(start=start, end=end):
                by_text = has_time_overlap(start, end, self.exist_start, self.exist_end)
                by_instant = has_time_overlap(
                    parse_slot(day, start),
                    parse_slot(day, end),
                    parse_slot(day, self.exist_start),
                    parse_slot(day, self.exist_end),
                )
                self.assertEqual(by_text, by_instant)

    def test_rejects_empty_interval(self) -> None:
        with self.assertRaises(ValueError):
            has_time_overlap("10:00", "10:00", self.exist_start, self.exist_end)


class TestParseSlot(unittest.TestCase):
    def test_combines_date_and_time_in_zone(self) -> None:
        instant = parse_slot("2024-06-10", "14:00", "America/Los_Angeles")

        self.assertEqual(instant.replace(tzinfo=None), datetime(2024, 6, 10, 14, 0))
        self.assertEqual(instant.utcoffset(), timedelta(hours=-7))

    def test_rejects_malformed_time(self) -> None:
        for value in ["2pm", "24:00", "9:00", "12:60", ""]:
            with self.subTest(value=value):
                with self.assertRaises(InvalidTimeFormat):
                    parse_slot("2024-06-10", value)

    def test_rejects_malformed_date(self) -> None:
        for value in ["2024/06/10", "2024-02-30", "10-06-2024"]:
            with self.subTest(value=value):
                with self.assertRaises(InvalidTimeFormat):
                    parse_slot(value, "10:00")

    def test_invalid_time_format_is_validation_error(self) -> None:
        self.assertTrue(issubclass(InvalidTimeFormat, ValidationError))


class TestDuration(unittest.TestCase):
    def test_duration_in_minutes(self) -> None:
        self.assertEqual(duration_minutes("14:00", "14:30"), 30)
        self.assertEqual(duration_minutes("09:15", "17:45"), 510)

    def test_zero_or_negative_duration_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            duration_minutes("14:00", "14:00")
        with self.assertRaises(ValidationError):
            duration_minutes("15:00", "14:00")


class TestPublicHoliday(unittest.TestCase):
    def test_detects_us_independence_day(self) -> None:
        self.assertTrue(is_public_holiday(date(2024, 7, 4), "US"))
        self.assertFalse(is_public_holiday(date(2024, 7, 5), "us"))


if __name__ == "__main__":
    unittest.main()
