import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from capture import ClipboardCapture, ClipboardReadError, ClipboardSource
from capture_dedupe import RecentHashWindow
from state_service import StateService
from state_store import StateStore
from text_filters import hash_text

PROMPT_A = "Refactor the payment module into smaller services"
PROMPT_B = "why does the websocket reconnect loop never back off?"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClipboard(ClipboardSource):
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.reads = 0
        self.fail = False

    def read_text(self) -> str:
        self.reads += 1
        if self.fail:
            raise ClipboardReadError("clipboard busy")
        return self.text


class RecentHashWindowTests(unittest.TestCase):
    def test_hashes_expire_after_window(self) -> None:
        clock = FakeClock()
        window = RecentHashWindow(window_seconds=480, clock=clock)
        window.record("abc")

        clock.advance(480)
        self.assertTrue(window.seen_recently("abc"))

        clock.advance(1)
        self.assertFalse(window.seen_recently("abc"))
        self.assertEqual(len(window), 0)

    def test_prune_reports_removed_count(self) -> None:
        clock = FakeClock()
        window = RecentHashWindow(window_seconds=10, clock=clock)
        window.record("a")
        clock.advance(5)
        window.record("b")
        clock.advance(6)

        self.assertEqual(window.prune(), 1)
        self.assertEqual(len(window), 1)


class ClipboardCaptureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.service = StateService(StateStore(Path(self.tmp.name) / "state.json"))
        self.service.get_state()
        self.clock = FakeClock()
        self.clipboard = FakeClipboard()
        self.captured = []
        self.capture = self._make_capture()

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def _make_capture(self) -> ClipboardCapture:
        return ClipboardCapture(
            self.clipboard,
            self.service,
            recent=RecentHashWindow(window_seconds=480, clock=self.clock),
            on_capture=self.captured.append,
            clock=self.clock,
        )

    def _copy(self, text: str):
        self.clipboard.text = text
        return self.capture.poll()

    def _timeline_texts(self):
        return [entry.text for entry in self.service.get_state().timeline]

    def test_prompt_is_logged_and_announced(self) -> None:
        entry = self._copy(PROMPT_A)

        self.assertIsNotNone(entry)
        self.assertEqual(entry.source, "auto-capture")
        self.assertEqual(entry.outcome, "pending")
        self.assertEqual(self._timeline_texts(), [PROMPT_A])
        self.assertEqual(self.captured, [entry])

    def test_unchanged_clipboard_is_not_reprocessed(self) -> None:
        self._copy(PROMPT_A)
        self.clock.advance(1.3)

        self.assertIsNone(self.capture.poll())
        self.assertEqual(len(self.captured), 1)

    def test_recopy_within_window_is_ignored(self) -> None:
        self._copy(PROMPT_A)
        self.clock.advance(30)
        self._copy("hello")
        self.clock.advance(30)
        self._copy(PROMPT_A)

        self.assertEqual(self._timeline_texts(), [PROMPT_A])

    def test_recopy_after_window_is_logged_again(self) -> None:
        self._copy(PROMPT_A)
        self._copy("")
        self.clock.advance(9 * 60)
        self._copy(PROMPT_A)

        self.assertEqual(self._timeline_texts(), [PROMPT_A, PROMPT_A])

    def test_empty_clipboard_resets_last_hash(self) -> None:
        self._copy(PROMPT_A)
        self.assertEqual(self.capture.last_hash, hash_text(PROMPT_A))

        self._copy("   ")
        self.assertEqual(self.capture.last_hash, "")

    def test_unreadable_clipboard_skips_tick(self) -> None:
        self._copy(PROMPT_A)
        self.clipboard.fail = True

        self.assertIsNone(self.capture.poll())
        self.assertEqual(self.capture.last_hash, hash_text(PROMPT_A))

        self.clipboard.fail = False
        self.assertIsNone(self._copy(PROMPT_A))

    def test_auto_capture_off_skips_clipboard_reads(self) -> None:
        self.service.update_state({"preferences": {"autoCapturePrompts": False}})

        self.assertIsNone(self._copy(PROMPT_A))
        self.assertEqual(self.clipboard.reads, 0)
        self.assertEqual(self._timeline_texts(), [])

    def test_rejected_text_is_not_logged(self) -> None:
        self.assertIsNone(self._copy("https://example.com/some/long/path"))
        self.assertIsNone(self._copy("lunch at noon with the whole team today"))
        self.assertEqual(self._timeline_texts(), [])

    def test_restart_does_not_relog_newest_entry(self) -> None:
        self._copy(PROMPT_A)
        self.clock.advance(60)

        self.capture = self._make_capture()
        self._copy(PROMPT_A)

        self.assertEqual(self._timeline_texts(), [PROMPT_A])
        self.assertEqual(len(self.capture.recent), 0)

    def test_distinct_prompts_are_both_logged(self) -> None:
        self._copy(PROMPT_A)
        self.clock.advance(2)
        self._copy(PROMPT_B)

        self.assertEqual(self._timeline_texts(), [PROMPT_A, PROMPT_B])

    def test_store_failure_is_logged_and_not_remembered(self) -> None:
        with mock.patch.object(self.service.store, "save", side_effect=OSError("read-only")):
            with self.assertLogs("capture", level="ERROR"):
                self.assertIsNone(self._copy(PROMPT_A))

        self.assertEqual(len(self.capture.recent), 0)
        self.assertEqual(self.captured, [])
        self.assertEqual(self._timeline_texts(), [])

    def test_seed_ignores_text_present_at_startup(self) -> None:
        self.clipboard.text = PROMPT_A
        self.capture.seed()

        self.assertIsNone(self.capture.poll())

        self._copy(PROMPT_B)
        self.assertEqual(self._timeline_texts(), [PROMPT_B])

    def test_seed_with_unreadable_clipboard(self) -> None:
        self.clipboard.fail = True
        self.capture.seed()

        self.assertEqual(self.capture.last_hash, "")


if __name__ == "__main__":
    unittest.main()
