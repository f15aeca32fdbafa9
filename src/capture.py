import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from capture_dedupe import RecentHashWindow
from state_schema import TimelineEntry
from state_service import StateService
from text_filters import DEFAULT_CLASSIFIER, PromptClassifier, hash_text, safe_text

logger = logging.getLogger(__name__)


class ClipboardReadError(RuntimeError):
    """The clipboard could not be read this time; try again next tick."""


class ClipboardSource(ABC):
    @abstractmethod
    def read_text(self) -> str:
        pass


class ClipboardCapture:
    """Polls the clipboard and logs anything that looks like an AI prompt.

    Nothing here raises to the timer that drives ``poll``: unreadable
    clipboards, rejected text and repeats all end the tick quietly.
    """

    def __init__(
        self,
        clipboard: ClipboardSource,
        state_service: StateService,
        *,
        classifier: Optional[PromptClassifier] = None,
        recent: Optional[RecentHashWindow] = None,
        on_capture: Optional[Callable[[TimelineEntry], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.clipboard = clipboard
        self.state_service = state_service
        self.classifier = classifier or DEFAULT_CLASSIFIER
        self._clock = clock or time.time
        self.recent = recent or RecentHashWindow(clock=self._clock)
        self.on_capture = on_capture
        self._last_hash = ""

    @property
    def last_hash(self) -> str:
        return self._last_hash

    def seed(self) -> None:
        """Remember what is on the clipboard at start-up so it is not captured."""
        try:
            text = safe_text(self.clipboard.read_text())
        except ClipboardReadError:
            self._last_hash = ""
            return
        self._last_hash = hash_text(text) if text else ""

    def poll(self) -> Optional[TimelineEntry]:
        if not self.state_service.get_state().preferences.auto_capture_prompts:
            return None

        try:
            raw = self.clipboard.read_text()
        except ClipboardReadError as exc:
            logger.debug("Clipboard unreadable, skipping tick: %s", exc)
            return None

        text = safe_text(raw)
        if not text:
            self._last_hash = ""
            return None

        content_hash = hash_text(text)
        if content_hash == self._last_hash:
            return None
        self._last_hash = content_hash

        verdict = self.classifier.evaluate(text)
        if not verdict.accepted:
            logger.debug("Clipboard text rejected by %s", verdict.decided_by or "no acceptance rule")
            return None

        if self.recent.seen_recently(content_hash):
            logger.debug("Clipboard prompt already captured within the dedupe window.")
            return None

        try:
            entry = self.state_service.append_timeline_entry(
                text,
                source="auto-capture",
                created_at=self._clock(),
                repeat_window_seconds=self.recent.window_seconds,
            )
        except OSError:
            logger.exception("Failed to persist captured prompt")
            return None

        if entry is None:
            return None

        self.recent.record(content_hash)
        logger.info("Captured prompt from clipboard (%s, %d chars)", verdict.decided_by, len(entry.text))
        if self.on_capture:
            self.on_capture(entry)
        return entry
