import json
import plistlib
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from upgrade_scheduler.kernel.errors import StoreError
from upgrade_scheduler.kernel.state_store import PersistedState, StateStore

NOW = 1_700_000_000


class StateStoreTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tempdir.name)
        self.path = self.root / "state.plist"
        self.store = StateStore(self.path, "2.0.0")

    def tearDown(self):
        self.tempdir.cleanup()

    def _stored(self) -> dict:
        with open(self.path, "rb") as handle:
            return plistlib.load(handle)

    def test_missing_record_is_initialized_and_persisted(self):
        state = self.store.load(NOW)
        self.assertEqual(state, PersistedState(defer_count=0, first_prompt_date=NOW, script_version="2.0.0"))
        record = self._stored()
        self.assertEqual(record["deferCount"], 0)
        self.assertEqual(record["firstPromptDate"], NOW)
        self.assertEqual(record["scriptVersion"], "2.0.0")

    def test_save_then_load_round_trips(self):
        state = PersistedState(2, NOW - 100, "2.0.0", abort_count=1, deferred_until=NOW + 50)
        self.store.save(state)
        self.assertEqual(self.store.load(NOW), state)

    def test_version_change_resets_cycle(self):
        self.store.save(PersistedState(3, NOW - 500_000, "1.9.0", abort_count=2))
        state = self.store.load(NOW)
        self.assertEqual(state.defer_count, 0)
        self.assertEqual(state.first_prompt_date, NOW)
        self.assertEqual(state.abort_count, 0)
        self.assertEqual(self._stored()["scriptVersion"], "2.0.0")

    def test_corrupt_fields_are_repaired_individually(self):
        record = {"deferCount": "abc", "firstPromptDate": str(NOW - 10), "scriptVersion": "2.0.0", "abortCount": -1}
        with open(self.path, "wb") as handle:
            plistlib.dump(record, handle)
        state = self.store.load(NOW)
        self.assertEqual(state.defer_count, 0)
        self.assertEqual(state.first_prompt_date, NOW - 10)
        self.assertEqual(state.abort_count, 0)
        stored = self._stored()
        self.assertEqual(stored["deferCount"], 0)
        self.assertEqual(stored["firstPromptDate"], NOW - 10)

    def test_unparseable_record_is_repaired_as_empty(self):
        self.path.write_bytes(b"\x00garbage")
        state = self.store.load(NOW)
        self.assertEqual(state, PersistedState.fresh(NOW, "2.0.0"))
        self.assertEqual(self._stored()["deferCount"], 0)

    def test_json_encoding_for_other_suffixes(self):
        store = StateStore(self.root / "state.json", "2.0.0")
        store.save(PersistedState(1, NOW, "2.0.0"))
        data = json.loads((self.root / "state.json").read_text(encoding="utf-8"))
        self.assertEqual(data["deferCount"], 1)
        self.assertEqual(store.load(NOW).defer_count, 1)

    def test_reset_starts_new_cycle(self):
        self.store.save(PersistedState(2, NOW - 1000, "2.0.0", abort_count=1))
        state = self.store.reset(NOW)
        self.assertEqual(state, PersistedState.fresh(NOW, "2.0.0"))
        self.assertEqual(self.store.load(NOW + 1), state)

    def test_write_failure_raises_store_error_and_keeps_old_record(self):
        self.store.save(PersistedState(1, NOW, "2.0.0"))
        with mock.patch("upgrade_scheduler.kernel.state_store.atomic_write_bytes", side_effect=OSError("disk full")):
            with self.assertRaises(StoreError):
                self.store.save(PersistedState(2, NOW, "2.0.0"))
        self.assertEqual(self._stored()["deferCount"], 1)


if __name__ == "__main__":
    unittest.main()
