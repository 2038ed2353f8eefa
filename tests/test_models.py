import unittest
from datetime import date, datetime

from calsync.models import AppConfig, SchedulingConfig, SyncEntry, schedule_origin


class ModelsTests(unittest.TestCase):
    def test_scheduling_defaults_and_bounds(self) -> None:
        cfg = SchedulingConfig.from_dict({"start_hour": 24, "start_minute": "15", "calendar_id": "  "})
        self.assertEqual(cfg.start_hour, 10)
        self.assertEqual(cfg.start_minute, 15)
        self.assertEqual(cfg.calendar_id, "primary")
        self.assertEqual(cfg.time_zone, "UTC")

        cfg = SchedulingConfig.from_dict({"start_hour": "nope", "start_minute": -1})
        self.assertEqual((cfg.start_hour, cfg.start_minute), (10, 30))

    def test_google_config_requires_client_and_refresh_token(self) -> None:
        self.assertFalse(AppConfig.from_dict({"google": {"client_id": "cid"}}).google.is_configured())
        self.assertTrue(
            AppConfig.from_dict({"google": {"client_id": "cid", "refresh_token": "r"}}).google.is_configured()
        )

    def test_blank_timeout_falls_back_to_default(self) -> None:
        google = AppConfig.from_dict({"google": {"client_id": "cid", "timeout_seconds": None}}).google
        self.assertEqual(google.timeout_seconds, 30)

    def test_sync_entry_requires_hash_and_event_id(self) -> None:
        with self.assertRaises(ValueError):
            SyncEntry.from_dict({"hash": "abc", "googleEventId": ""})

    def test_schedule_origin_is_wall_clock(self) -> None:
        origin = schedule_origin(date(2026, 10, 18), 10, 30)
        self.assertEqual(origin, datetime(2026, 10, 18, 10, 30))
        self.assertIsNone(origin.tzinfo)


if __name__ == "__main__":
    unittest.main()
