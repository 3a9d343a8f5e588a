import datetime
import json
import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from clock import FixedClock
from draft_store import DraftStore
from entry import Draft, LoadUnit

UTC = datetime.timezone.utc
NOON = int(datetime.datetime(2024, 5, 1, 12, tzinfo=UTC).timestamp())


class DraftStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.path = "test_draft.json"
        if os.path.exists(self.path):
            os.remove(self.path)
        self.clock = FixedClock(NOON)
        self.store = DraftStore(self.path, self.clock, UTC)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

    def test_same_day_round_trip(self) -> None:
        draft = Draft(["incline"], ["bench", "press"], 60, LoadUnit.WEIGHT, 8, 2, 90)
        self.store.save(draft)
        with open(self.path, "r", encoding="utf-8") as f:
            self.assertEqual(json.load(f)["day"], "2024-05-01")
        self.clock.advance(3600 * 11)
        self.assertEqual(self.store.load(), draft)

    def test_stale_draft_is_discarded(self) -> None:
        self.store.save(Draft(verbs=["squat"]))
        self.clock.advance(3600 * 12)
        self.assertIsNone(self.store.load())
        self.assertFalse(os.path.exists(self.path))

    def test_missing_or_corrupt_file(self) -> None:
        self.assertIsNone(self.store.load())
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertIsNone(self.store.load())
        self.assertFalse(os.path.exists(self.path))

    def test_clear(self) -> None:
        self.store.save(Draft(verbs=["squat"]))
        self.store.clear()
        self.assertIsNone(self.store.load())


if __name__ == "__main__":
    unittest.main()
