import logging
from typing import Any, Callable, List, Optional

from capture import ClipboardCapture, ClipboardSource
from constants import CAPTURE_POLL_MS, HOVER_POLL_MS, TOPMOST_HEARTBEAT_MS
from dock import DockController, PanelMetrics, PanelWindow, ScreenProvider
from scheduling import ScheduledHandle, Scheduler
from state_schema import CanonicalState, TimelineEntry
from state_service import StateService
from suggestions import SuggestionResult, SuggestionService

logger = logging.getLogger(__name__)


class OverlayRuntime:
    """
    Everything the panel UI talks to.

    Owns the three periodic tasks (pointer/placement sync, topmost heartbeat,
    clipboard poll) and exposes the request/response operations. Mutating
    operations return the resulting canonical state.
    """

    def __init__(
        self,
        *,
        window: PanelWindow,
        screen: ScreenProvider,
        clipboard: ClipboardSource,
        scheduler: Scheduler,
        state_service: Optional[StateService] = None,
        suggestion_service: Optional[SuggestionService] = None,
        metrics: Optional[PanelMetrics] = None,
        on_expanded_change: Optional[Callable[[bool], None]] = None,
        on_capture: Optional[Callable[[TimelineEntry], None]] = None,
        hover_poll_ms: int = HOVER_POLL_MS,
        heartbeat_ms: int = TOPMOST_HEARTBEAT_MS,
        capture_poll_ms: int = CAPTURE_POLL_MS,
    ) -> None:
        self.scheduler = scheduler
        self.state_service = state_service or StateService()
        self.suggestion_service = suggestion_service
        self.dock = DockController(
            window,
            screen,
            scheduler,
            self.state_service,
            metrics=metrics,
            on_expanded_change=on_expanded_change,
        )
        self.capture = ClipboardCapture(clipboard, self.state_service, on_capture=on_capture)
        self.hover_poll_ms = hover_poll_ms
        self.heartbeat_ms = heartbeat_ms
        self.capture_poll_ms = capture_poll_ms
        self._timers: List[ScheduledHandle] = []

    # Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self._timers:
            logger.warning("OverlayRuntime already running.")
            return
        self.state_service.get_state()
        self.dock.start()
        self.capture.seed()
        self._timers = [
            self.scheduler.call_every(self.hover_poll_ms, self._guarded(self.dock.sync_from_pointer)),
            self.scheduler.call_every(self.heartbeat_ms, self._guarded(self.dock.enforce_top_most)),
            self.scheduler.call_every(self.capture_poll_ms, self._guarded(self.capture.poll)),
        ]
        logger.info("OverlayRuntime started.")

    def stop(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self.dock.shutdown()
        logger.info("OverlayRuntime stopped.")

    @property
    def running(self) -> bool:
        return bool(self._timers)

    # Operations exposed to the UI ------------------------------------------

    def get_state(self) -> CanonicalState:
        return self.state_service.get_state()

    def update_state(self, partial: Any) -> CanonicalState:
        return self.state_service.update_state(partial)

    def evolve_prompts(self, snapshot: Any = None) -> SuggestionResult:
        if self.suggestion_service is None:
            self.suggestion_service = SuggestionService()
        source = snapshot if snapshot is not None else self.get_state()
        try:
            return self.suggestion_service.evolve(source)
        except Exception as exc:
            # Runs on a worker thread; the panel waits for a result either way.
            logger.exception("Prompt evolution failed: %s", exc)
            return self.suggestion_service.heuristic_result(
                source, "Prompt evolution failed unexpectedly, using heuristic fallback."
            )

    def set_hover(self, hovering: bool) -> None:
        self.dock.set_renderer_hover(hovering)

    def set_pinned(self, pinned: bool) -> CanonicalState:
        return self.dock.set_pinned(pinned)

    def set_dock(self, dock: str) -> CanonicalState:
        return self.dock.set_dock(dock)

    def invoke_hotkey(self) -> CanonicalState:
        return self.dock.invoke_hotkey()

    def handle_display_change(self) -> None:
        self.dock.handle_display_change()

    def handle_blur(self) -> None:
        self.dock.handle_blur()

    def handle_activate(self) -> None:
        self.dock.handle_activate()

    # Internal helpers ----------------------------------------------------------

    @staticmethod
    def _guarded(task: Callable[[], Any]) -> Callable[[], None]:
        def run() -> None:
            try:
                task()
            except Exception as exc:
                logger.exception("Periodic task %s failed: %s", getattr(task, "__name__", task), exc)

        return run
