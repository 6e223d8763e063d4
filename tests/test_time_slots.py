import unittest
from datetime import datetime

from upgrade_scheduler.engine.slots import generate_time_slots, parse_time_slot


class TimeSlotTests(unittest.TestCase):
    def test_slots_start_at_next_full_hour(self):
        slots = generate_time_slots(datetime(2024, 5, 6, 14, 20))
        labels = [slot.label for slot in slots]
        self.assertEqual(labels[:3], ["15:00", "15:30", "16:00"])
        self.assertEqual(labels[-1], "23:30")
        self.assertEqual(len(labels), 18)
        self.assertFalse(any(slot.tomorrow for slot in slots))
        self.assertEqual(slots[1].at, datetime(2024, 5, 6, 15, 30))

    def test_late_evening_adds_tomorrow_slots(self):
        slots = generate_time_slots(datetime(2024, 5, 6, 22, 45))
        labels = [slot.label for slot in slots]
        self.assertEqual(labels[:2], ["23:00", "23:30"])
        self.assertEqual(labels[2], "Tomorrow 08:00")
        self.assertEqual(labels[-1], "Tomorrow 22:00")
        self.assertEqual(slots[2].at, datetime(2024, 5, 7, 8, 0))

    def test_tomorrow_slots_roll_over_month_end(self):
        slots = generate_time_slots(datetime(2024, 5, 31, 23, 10))
        self.assertEqual(slots[0].label, "Tomorrow 08:00")
        self.assertEqual(slots[0].at, datetime(2024, 6, 1, 8, 0))

    def test_parse_time_slot(self):
        now = datetime(2024, 5, 6, 14, 20)
        slot = parse_time_slot("9:30", datetime(2024, 5, 6, 8, 0))
        self.assertEqual(slot.label, "09:30")
        self.assertEqual(parse_time_slot("Tomorrow 08:00", now).at, datetime(2024, 5, 7, 8, 0))
        self.assertIsNone(parse_time_slot("13:00", now))
        self.assertIsNone(parse_time_slot("25:00", now))
        self.assertIsNone(parse_time_slot("soon", now))
        self.assertIsNone(parse_time_slot("", now))


if __name__ == "__main__":
    unittest.main()
