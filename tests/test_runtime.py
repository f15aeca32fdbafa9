import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from api_models import Model
from capture import ClipboardSource
from dock import PanelMetrics, PanelWindow, ScreenProvider
from runtime import OverlayRuntime
from scheduling import ScheduledHandle, Scheduler
from state_schema import Point, Rect
from state_service import StateService
from state_store import StateStore
from suggestions import SuggestionService

PROMPT = "Refactor the payment module into smaller services"


class _Handle(ScheduledHandle):
    def __init__(self, due, interval, callback):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    @property
    def active(self):
        return not self.cancelled

    def cancel(self):
        self.cancelled = True


class ManualScheduler(Scheduler):
    def __init__(self):
        self.now = 0
        self.handles = []

    def call_later(self, delay_ms, callback):
        handle = _Handle(self.now + delay_ms, None, callback)
        self.handles.append(handle)
        return handle

    def call_every(self, interval_ms, callback):
        handle = _Handle(self.now + interval_ms, interval_ms, callback)
        self.handles.append(handle)
        return handle

    def periodic(self):
        return [handle for handle in self.handles if handle.interval is not None]

    def advance(self, ms):
        target = self.now + ms
        while True:
            due = [handle for handle in self.handles if handle.active and handle.due <= target]
            if not due:
                break
            handle = min(due, key=lambda item: item.due)
            self.now = handle.due
            if handle.interval is None:
                handle.cancelled = True
            else:
                handle.due += handle.interval
            handle.callback()
        self.now = target


class StubWindow(PanelWindow):
    def __init__(self):
        self.bounds = Rect(0, 0, 0, 0)

    def is_destroyed(self):
        return False

    def get_bounds(self):
        return self.bounds

    def set_bounds(self, bounds):
        self.bounds = bounds

    def set_always_on_top(self, level):
        pass

    def move_top(self):
        pass

    def set_visible_on_all_workspaces(self, visible_on_full_screen):
        pass

    def show_inactive(self):
        pass

    def focus(self):
        pass


class StubScreen(ScreenProvider):
    def cursor_position(self):
        return Point(800, 500)

    def nearest_work_area(self, point):
        return Rect(0, 0, 1920, 1080)


class CrashingModel(Model):
    provider = "groq"

    def __init__(self):
        super().__init__("crashing")

    def call_model(self, user_prompt, system_prompt=None):
        raise ValueError("unexpected reply shape")


class StubClipboard(ClipboardSource):
    def __init__(self):
        self.text = ""
        self.error = None

    def read_text(self):
        if self.error is not None:
            raise self.error
        return self.text


class OverlayRuntimeTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.service = StateService(StateStore(Path(self.tmp.name) / "state.json"))
        self.scheduler = ManualScheduler()
        self.clipboard = StubClipboard()
        self.captured = []
        self.expanded_events = []
        self.runtime = OverlayRuntime(
            window=StubWindow(),
            screen=StubScreen(),
            clipboard=self.clipboard,
            scheduler=self.scheduler,
            state_service=self.service,
            suggestion_service=SuggestionService(model=None, auto_create=False),
            metrics=PanelMetrics(360, 20, 100, 12, 12, 180, 10),
            on_expanded_change=self.expanded_events.append,
            on_capture=self.captured.append,
        )

    def tearDown(self):
        self.runtime.stop()
        self.tmp.cleanup()

    def test_start_registers_periodic_tasks(self):
        self.runtime.start()

        self.assertTrue(self.runtime.running)
        self.assertEqual(sorted(handle.interval for handle in self.scheduler.periodic()), [120, 800, 1300])
        self.assertEqual(self.expanded_events, [False])

    def test_second_start_is_ignored(self):
        self.runtime.start()

        with self.assertLogs("runtime", level="WARNING"):
            self.runtime.start()
        self.assertEqual(len(self.scheduler.periodic()), 3)

    def test_stop_cancels_timers(self):
        self.runtime.start()
        self.runtime.stop()

        self.assertFalse(self.runtime.running)
        self.assertFalse(any(handle.active for handle in self.scheduler.handles))

    def test_clipboard_poll_captures_prompt(self):
        self.runtime.start()
        self.clipboard.text = PROMPT

        self.scheduler.advance(1300)

        timeline = self.runtime.get_state().timeline
        self.assertEqual([entry.text for entry in timeline], [PROMPT])
        self.assertEqual(self.captured, timeline)

    def test_failing_task_is_logged_and_keeps_running(self):
        self.runtime.start()
        self.clipboard.error = RuntimeError("clipboard driver crashed")

        with self.assertLogs("runtime", level="ERROR"):
            self.scheduler.advance(1300)

        self.clipboard.error = None
        self.clipboard.text = PROMPT
        self.scheduler.advance(1300)
        self.assertEqual(len(self.runtime.get_state().timeline), 1)

    def test_pin_and_hover_drive_the_dock(self):
        self.runtime.start()

        state = self.runtime.set_pinned(True)
        self.assertTrue(state.preferences.pinned)
        self.assertTrue(self.runtime.dock.expanded)

        self.runtime.set_pinned(False)
        self.runtime.set_hover(True)
        self.scheduler.advance(1000)
        self.assertTrue(self.runtime.dock.expanded)

        self.runtime.set_hover(False)
        self.scheduler.advance(200)
        self.assertFalse(self.runtime.dock.expanded)

    def test_update_and_dock_side(self):
        self.runtime.start()

        self.runtime.update_state({"sessionGoal": "Finish auth"})
        state = self.runtime.set_dock("left")

        self.assertEqual(state.session_goal, "Finish auth")
        self.assertEqual(state.preferences.dock, "left")

    def test_evolve_prompts_without_model(self):
        self.runtime.update_state({"prompts": [{"text": "add caching to the user lookup"}]})

        result = self.runtime.evolve_prompts()

        self.assertEqual(result.source, "heuristic")
        self.assertIn("add caching to the user lookup", result.items[0].prompt)

    def test_evolve_prompts_survives_model_crash(self):
        self.runtime.suggestion_service = SuggestionService(model=CrashingModel(), auto_create=False)

        with self.assertLogs("runtime", level="ERROR"):
            result = self.runtime.evolve_prompts()

        self.assertEqual(result.source, "heuristic")
        self.assertEqual(len(result.items), 6)
        self.assertIn("failed unexpectedly", result.message)


if __name__ == "__main__":
    unittest.main()
