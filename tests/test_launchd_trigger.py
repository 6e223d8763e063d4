import plistlib
import subprocess
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from upgrade_scheduler.adapters.trigger import LaunchdTrigger
from upgrade_scheduler.kernel.errors import TriggerError

LABEL = "com.upgradescheduler.schedule"
COMMAND = ["/usr/bin/python3", "-m", "upgrade_scheduler", "--scheduled"]


class _FakeLaunchctl:
    """Tracks which labels are loaded; fails verbs listed in ``fail``."""

    def __init__(self, fail=()):
        self.loaded = set()
        self.fail = set(fail)
        self.fail_path_bootout = False
        self.calls = []

    def __call__(self, argv, **_kwargs):
        self.calls.append(list(argv))
        verb = argv[1]
        code = 0
        if verb in self.fail:
            code = 1
        elif verb == "print":
            code = 0 if argv[2].split("/", 1)[1] in self.loaded else 113
        elif verb == "bootstrap":
            self.loaded.add(Path(argv[3]).stem)
        elif verb == "bootout":
            target = argv[-1]
            if target.endswith(".plist"):
                if self.fail_path_bootout:
                    code = 5
                else:
                    self.loaded.discard(Path(target).stem)
            else:
                self.loaded.discard(target.split("/", 1)[1])
        return subprocess.CompletedProcess(argv, code, stdout="", stderr="")


class LaunchdTriggerTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.dir = Path(self.tempdir.name)
        self.launchctl = _FakeLaunchctl()
        self.trigger = LaunchdTrigger(self.dir, runner=self.launchctl, today=lambda: date(2024, 5, 6))

    def tearDown(self):
        self.tempdir.cleanup()

    def test_replace_twice_leaves_one_trigger_at_latest_time(self):
        self.trigger.replace(datetime(2024, 5, 6, 15, 0), COMMAND)
        self.trigger.replace(datetime(2024, 5, 6, 16, 30), COMMAND)
        self.assertEqual(sorted(p.name for p in self.dir.glob("*.plist")), [f"{LABEL}.plist"])
        self.assertEqual(self.launchctl.loaded, {LABEL})
        pending = self.trigger.pending()
        self.assertEqual((pending.hour, pending.minute), (16, 30))
        self.assertIsNone(pending.day)
        self.assertEqual(list(pending.program_arguments), COMMAND)

    def test_tomorrow_slot_pins_day_and_month(self):
        self.trigger.replace(datetime(2024, 5, 7, 8, 0), COMMAND)
        with open(self.dir / f"{LABEL}.plist", "rb") as handle:
            definition = plistlib.load(handle)
        self.assertEqual(definition["StartCalendarInterval"], {"Hour": 8, "Minute": 0, "Day": 7, "Month": 5})
        self.assertFalse(definition["RunAtLoad"])
        self.assertEqual(definition["Label"], LABEL)

    def test_remove_clears_stale_related_definitions(self):
        (self.dir / f"{LABEL}.old.plist").write_bytes(plistlib.dumps({"Label": f"{LABEL}.old"}))
        self.launchctl.loaded.add(f"{LABEL}.old")
        self.trigger.replace(datetime(2024, 5, 6, 18, 0), COMMAND)
        self.assertEqual(self.launchctl.loaded, {LABEL})
        self.assertTrue(self.trigger.remove())
        self.assertEqual(list(self.dir.glob("*.plist")), [])
        self.assertEqual(self.launchctl.loaded, set())
        self.assertIsNone(self.trigger.pending())
        self.assertFalse(self.trigger.remove())

    def test_bootout_falls_back_to_label(self):
        self.trigger.replace(datetime(2024, 5, 6, 18, 0), COMMAND)
        self.launchctl.fail_path_bootout = True
        self.assertTrue(self.trigger.remove())
        self.assertIn(["launchctl", "bootout", f"system/{LABEL}"], self.launchctl.calls)
        self.assertEqual(self.launchctl.loaded, set())

    def test_bootstrap_failure_leaves_no_definition(self):
        self.launchctl.fail = {"bootstrap"}
        with self.assertRaises(TriggerError):
            self.trigger.replace(datetime(2024, 5, 6, 15, 0), COMMAND)
        self.assertEqual(list(self.dir.glob("*.plist")), [])


if __name__ == "__main__":
    unittest.main()
