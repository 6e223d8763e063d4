import subprocess
import unittest
from dataclasses import replace
from datetime import datetime

from upgrade_scheduler.adapters.prompt import DialogPrompt, collect_response, parse_selection
from upgrade_scheduler.engine.decision import PromptResponse, UserChoice
from upgrade_scheduler.engine.slots import TimeSlot
from upgrade_scheduler.kernel.config import default_config


class _FakeDialog:
    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    def __call__(self, argv, **_kwargs):
        self.calls.append(list(argv))
        returncode, stdout = self.outputs.pop(0)
        return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr="")


class _ScriptedPrompt:
    def __init__(self, response, slot_label=None):
        self.response = response
        self.slot_label = slot_label
        self.offered = None
        self.slots = None

    def choose_action(self, options, *, enforced):
        self.offered = tuple(options)
        return self.response

    def choose_time(self, slots):
        self.slots = list(slots)
        for slot in slots:
            if slot.label == self.slot_label:
                return slot
        return None


class ParseSelectionTests(unittest.TestCase):
    def test_selected_option(self):
        self.assertEqual(parse_selection('{"SelectedOption": "Install Now", "SelectedIndex": 0}'), "Install Now")

    def test_nested_selected_value(self):
        self.assertEqual(parse_selection('{"Choose time:": {"selectedValue": "16:30"}}'), "16:30")

    def test_leading_noise_is_skipped(self):
        self.assertEqual(parse_selection('warning: x\n{"SelectedOption": "Defer 24 Hours"}\n'), "Defer 24 Hours")

    def test_garbage_is_no_selection(self):
        self.assertIsNone(parse_selection(""))
        self.assertIsNone(parse_selection("not json"))
        self.assertIsNone(parse_selection("[1, 2]"))
        self.assertIsNone(parse_selection('{"SelectedOption": 3}'))


class DialogPromptTests(unittest.TestCase):
    def setUp(self):
        self.config = default_config()

    def test_choose_action_maps_label_to_choice(self):
        runner = _FakeDialog((0, '{"SelectedOption": "Schedule Today"}'))
        prompt = DialogPrompt(self.config, runner=runner)
        response = prompt.choose_action(
            (UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY, UserChoice.DEFER), enforced=False
        )
        self.assertEqual(response.choice, UserChoice.SCHEDULE_TODAY)
        argv = runner.calls[0]
        self.assertEqual(argv[0], self.config.dialog_path)
        self.assertIn("--jsonoutput", argv)
        values = argv[argv.index("--selectvalues") + 1]
        self.assertEqual(values, "Install Now,Schedule Today,Defer 24 Hours")

    def test_enforced_prompt_omits_defer(self):
        runner = _FakeDialog((0, '{"SelectedOption": "Install Now"}'))
        prompt = DialogPrompt(self.config, runner=runner)
        prompt.choose_action((UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY), enforced=True)
        argv = runner.calls[0]
        self.assertEqual(argv[argv.index("--selectvalues") + 1], "Install Now,Schedule Today")
        self.assertIn("deferral limit", argv[argv.index("--message") + 1])

    def test_selection_maps_among_offered_options_only(self):
        config = replace(self.config, defer_text="Install Now")
        runner = _FakeDialog((0, '{"SelectedOption": "Install Now"}'))
        response = DialogPrompt(config, runner=runner).choose_action(
            (UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY), enforced=True
        )
        self.assertEqual(response.choice, UserChoice.INSTALL_NOW)

    def test_non_zero_exit_is_no_response(self):
        prompt = DialogPrompt(self.config, runner=_FakeDialog((2, "")))
        response = prompt.choose_action((UserChoice.INSTALL_NOW,), enforced=True)
        self.assertFalse(response.answered)

    def test_label_not_offered_is_no_response(self):
        runner = _FakeDialog((0, '{"SelectedOption": "Defer 24 Hours"}'))
        prompt = DialogPrompt(self.config, runner=runner)
        response = prompt.choose_action((UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY), enforced=True)
        self.assertIsNone(response.choice)

    def test_missing_binary_is_no_response(self):
        def _missing(argv, **_kwargs):
            raise FileNotFoundError(argv[0])

        prompt = DialogPrompt(self.config, runner=_missing)
        self.assertFalse(prompt.choose_action((UserChoice.INSTALL_NOW,), enforced=False).answered)

    def test_choose_time_returns_matching_slot(self):
        slots = [TimeSlot("15:00", datetime(2024, 5, 6, 15, 0)), TimeSlot("15:30", datetime(2024, 5, 6, 15, 30))]
        prompt = DialogPrompt(self.config, runner=_FakeDialog((0, '{"SelectedOption": "15:30"}')))
        self.assertEqual(prompt.choose_time(slots), slots[1])


class CountdownTests(unittest.TestCase):
    def setUp(self):
        self.config = default_config()

    def test_countdown_runs_timer_dialog(self):
        runner = _FakeDialog((0, ""))
        DialogPrompt(self.config, runner=runner).countdown(60)
        argv = runner.calls[0]
        self.assertEqual(argv[0], self.config.dialog_path)
        self.assertEqual(argv[argv.index("--timer") + 1], "60")
        self.assertEqual(argv[argv.index("--button1text") + 1], "Continue Now")
        self.assertEqual(argv[argv.index("--title") + 1], "macOS Upgrade Starting")
        self.assertNotIn("--select", argv)

    def test_zero_seconds_skips_dialog(self):
        runner = _FakeDialog()
        DialogPrompt(self.config, runner=runner).countdown(0)
        self.assertEqual(runner.calls, [])

    def test_dialog_failures_do_not_block_install(self):
        def _missing(argv, **_kwargs):
            raise FileNotFoundError(argv[0])

        def _hung(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

        DialogPrompt(self.config, runner=_missing).countdown(60)
        DialogPrompt(self.config, runner=_hung).countdown(60)


class CollectResponseTests(unittest.TestCase):
    def _clock(self, value):
        return lambda: value

    def test_schedule_today_collects_slot(self):
        prompt = _ScriptedPrompt(PromptResponse(choice=UserChoice.SCHEDULE_TODAY), slot_label="16:30")
        response = collect_response(
            prompt,
            (UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY),
            enforced=True,
            clock=self._clock(datetime(2024, 5, 6, 14, 5)),
        )
        self.assertEqual(response.slot.at, datetime(2024, 5, 6, 16, 30))
        self.assertEqual(prompt.offered, (UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY))

    def test_slots_follow_the_clock_after_the_action_dialog(self):
        times = [datetime(2024, 5, 6, 14, 5)]
        prompt = _ScriptedPrompt(PromptResponse(choice=UserChoice.SCHEDULE_TODAY), slot_label="19:00")
        original = prompt.choose_action

        def _slow_choice(options, *, enforced):
            times[0] = datetime(2024, 5, 6, 18, 40)
            return original(options, enforced=enforced)

        prompt.choose_action = _slow_choice
        response = collect_response(prompt, (UserChoice.SCHEDULE_TODAY,), enforced=False, clock=lambda: times[0])
        self.assertEqual(prompt.slots[0].label, "19:00")
        self.assertEqual(response.slot.at, datetime(2024, 5, 6, 19, 0))

    def test_schedule_today_without_slot(self):
        prompt = _ScriptedPrompt(PromptResponse(choice=UserChoice.SCHEDULE_TODAY), slot_label=None)
        response = collect_response(
            prompt, (UserChoice.SCHEDULE_TODAY,), enforced=False, clock=self._clock(datetime(2024, 5, 6, 14, 5))
        )
        self.assertEqual(response.choice, UserChoice.SCHEDULE_TODAY)
        self.assertIsNone(response.slot)

    def test_other_choices_pass_through(self):
        prompt = _ScriptedPrompt(PromptResponse(choice=UserChoice.DEFER))
        response = collect_response(prompt, (UserChoice.INSTALL_NOW,), enforced=True)
        self.assertEqual(response.choice, UserChoice.DEFER)
        self.assertIsNone(prompt.slots)


if __name__ == "__main__":
    unittest.main()
