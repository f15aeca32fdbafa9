import logging
import platform
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from constants import (
    COLLAPSE_DELAY_MS,
    EDGE_THRESHOLD_PX,
    PANEL_BOTTOM_PADDING,
    PANEL_COLLAPSED_HEIGHT,
    PANEL_COLLAPSED_WIDTH,
    PANEL_EXPANDED_WIDTH,
    PANEL_TOP_PADDING,
)
from scheduling import DebouncedAction, Scheduler
from state_schema import DOCK_SIDES, CanonicalState, Point, Rect
from state_service import StateService

logger = logging.getLogger(__name__)

DEGRADED_TOPMOST_LEVEL = "floating"


class WindowOperationError(RuntimeError):
    """The platform refused a window-level request (topmost, workspaces)."""


class PanelWindow(ABC):
    """The borderless panel as seen by the dock controller."""

    @abstractmethod
    def is_destroyed(self) -> bool:
        pass

    @abstractmethod
    def get_bounds(self) -> Rect:
        pass

    @abstractmethod
    def set_bounds(self, bounds: Rect) -> None:
        pass

    @abstractmethod
    def set_always_on_top(self, level: str) -> None:
        pass

    @abstractmethod
    def move_top(self) -> None:
        pass

    @abstractmethod
    def set_visible_on_all_workspaces(self, visible_on_full_screen: bool) -> None:
        pass

    @abstractmethod
    def show_inactive(self) -> None:
        pass

    @abstractmethod
    def focus(self) -> None:
        pass


class ScreenProvider(ABC):
    @abstractmethod
    def cursor_position(self) -> Optional[Point]:
        pass

    @abstractmethod
    def nearest_work_area(self, point: Point) -> Optional[Rect]:
        pass


@dataclass
class PanelMetrics:
    expanded_width: int = PANEL_EXPANDED_WIDTH
    collapsed_width: int = PANEL_COLLAPSED_WIDTH
    collapsed_height: int = PANEL_COLLAPSED_HEIGHT
    top_padding: int = PANEL_TOP_PADDING
    bottom_padding: int = PANEL_BOTTOM_PADDING
    collapse_delay_ms: int = COLLAPSE_DELAY_MS
    edge_threshold_px: int = EDGE_THRESHOLD_PX


@dataclass
class PanelVisibilityState:
    expanded: bool
    pinned: bool
    dock: str


def compute_dock_bounds(expanded: bool, dock: str, area: Rect, metrics: PanelMetrics) -> Rect:
    """Panel rectangle for the given state, clamped so it never leaves ``area``."""
    if expanded:
        width = metrics.expanded_width
        height = max(area.height - metrics.top_padding - metrics.bottom_padding, 0)
    else:
        width = metrics.collapsed_width
        height = metrics.collapsed_height
    width = max(min(width, area.width), 0)
    height = max(min(height, area.height), 0)

    if expanded:
        y = area.y + metrics.top_padding
    else:
        y = area.y + (area.height - height + 1) // 2
    y = max(area.y, min(y, area.y + area.height - height))

    x = area.x if dock == "left" else area.x + area.width - width
    return Rect(x, y, width, height)


def is_point_near_dock_edge(point: Point, dock: str, area: Rect, threshold: int) -> bool:
    if dock == "left":
        return point.x <= area.x + threshold
    return point.x >= area.x + area.width - threshold


def topmost_level() -> str:
    return "screen-saver" if platform.system() == "Darwin" else "floating"


class DockController:
    """
    Collapsed/expanded state machine for the edge-docked panel.

    The expanded flag only changes through the transition methods below. Every
    method checks that the window is still alive first and does nothing once
    it is gone or after ``shutdown``.
    """

    def __init__(
        self,
        window: PanelWindow,
        screen: ScreenProvider,
        scheduler: Scheduler,
        state_service: StateService,
        *,
        metrics: Optional[PanelMetrics] = None,
        on_expanded_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.window = window
        self.screen = screen
        self.state_service = state_service
        self.metrics = metrics or PanelMetrics()
        self.on_expanded_change = on_expanded_change
        self._expanded = False
        self._renderer_hovering = False
        self._shut_down = False
        self._collapse = DebouncedAction(scheduler, self.metrics.collapse_delay_ms, self._collapse_now)

    # State -------------------------------------------------------------------

    @property
    def expanded(self) -> bool:
        return self._expanded

    @property
    def collapse_pending(self) -> bool:
        return self._collapse.pending

    def visibility(self) -> PanelVisibilityState:
        preferences = self.state_service.get_state().preferences
        return PanelVisibilityState(expanded=self._expanded, pinned=preferences.pinned, dock=preferences.dock)

    def _alive(self) -> bool:
        if self._shut_down or self.window is None:
            return False
        return not self.window.is_destroyed()

    # Geometry ----------------------------------------------------------------

    def reference_point(self) -> Optional[Point]:
        point = self.screen.cursor_position()
        if point is not None:
            return point
        if not self._alive():
            return None
        return self.window.get_bounds().center

    def dock_bounds(self, expanded: bool, anchor: Optional[Point] = None) -> Optional[Rect]:
        anchor = anchor or self.reference_point()
        if anchor is None:
            return None
        area = self.screen.nearest_work_area(anchor)
        if area is None:
            logger.debug("Display work area unavailable; skipping placement.")
            return None
        dock = self.state_service.get_state().preferences.dock
        return compute_dock_bounds(expanded, dock, area, self.metrics)

    def should_expand_for_pointer(self) -> bool:
        preferences = self.state_service.get_state().preferences
        if preferences.pinned or self._renderer_hovering:
            return True

        point = self.screen.cursor_position()
        if point is None:
            return False
        area = self.screen.nearest_work_area(point)
        if area is not None:
            within_track = (
                area.y + self.metrics.top_padding
                <= point.y
                <= area.y + area.height - self.metrics.bottom_padding
            )
            if within_track and is_point_near_dock_edge(point, preferences.dock, area, self.metrics.edge_threshold_px):
                return True

        if not self._alive():
            return False
        return self.window.get_bounds().contains(point)

    # Periodic tasks --------------------------------------------------------------

    def sync_placement(self, force: bool = False) -> None:
        if not self._alive():
            return
        target = self.dock_bounds(self._expanded)
        if target is None:
            return
        if force or target != self.window.get_bounds():
            self.window.set_bounds(target)

    def enforce_top_most(self) -> None:
        if not self._alive():
            return
        try:
            self.window.set_always_on_top(topmost_level())
            self.window.move_top()
            self.window.set_visible_on_all_workspaces(visible_on_full_screen=True)
        except WindowOperationError as exc:
            logger.debug("Topmost request refused, retrying without full-screen overlay: %s", exc)
            try:
                self.window.set_always_on_top(DEGRADED_TOPMOST_LEVEL)
                self.window.set_visible_on_all_workspaces(visible_on_full_screen=False)
            except WindowOperationError as retry_exc:
                logger.warning("Could not keep panel on top: %s", retry_exc)

    def sync_from_pointer(self) -> None:
        if not self._alive():
            return
        self.sync_placement()
        self.enforce_top_most()

        if self.should_expand_for_pointer():
            self._collapse.cancel()
            self._apply(True)
            return

        if self._expanded:
            self._collapse.schedule()

    # Transitions triggered by the UI ---------------------------------------------

    def start(self) -> None:
        pinned = self.state_service.get_state().preferences.pinned
        self.enforce_top_most()
        self._apply(pinned, force=True, focus=pinned)

    def set_renderer_hover(self, hovering: bool) -> None:
        self._renderer_hovering = bool(hovering)
        self.sync_from_pointer()

    def set_pinned(self, pinned: bool) -> CanonicalState:
        state = self.state_service.update_state({"preferences": {"pinned": bool(pinned)}})
        if state.preferences.pinned:
            self._collapse.cancel()
            self._apply(True, force=True, focus=True)
        else:
            self.sync_from_pointer()
        return state

    def set_dock(self, dock: str) -> CanonicalState:
        if dock not in DOCK_SIDES:
            logger.warning("Ignoring unknown dock side %r", dock)
            return self.state_service.get_state()
        state = self.state_service.update_state({"preferences": {"dock": dock}})
        self._apply(self._expanded or state.preferences.pinned, force=True)
        self.sync_from_pointer()
        return state

    def invoke_hotkey(self) -> CanonicalState:
        state = self.state_service.update_state({"preferences": {"pinned": True}})
        self._collapse.cancel()
        self._apply(True, force=True, focus=True)
        return state

    def handle_blur(self) -> None:
        if not self._alive():
            return
        if not self.state_service.get_state().preferences.pinned and self._expanded:
            self._collapse.schedule()

    def handle_display_change(self) -> None:
        self.sync_placement(force=True)
        self._apply(self._expanded, force=True)

    def handle_activate(self) -> None:
        self.enforce_top_most()
        self.sync_placement(force=True)
        self._collapse.cancel()
        self._apply(True, force=True)

    def shutdown(self) -> None:
        self._collapse.cancel()
        self._shut_down = True

    # Internal helpers --------------------------------------------------------------

    def _collapse_now(self) -> None:
        if not self._alive():
            return
        if self.state_service.get_state().preferences.pinned:
            return
        self._apply(False)

    def _apply(self, expanded: bool, *, force: bool = False, focus: bool = False) -> None:
        if not self._alive():
            return
        target = self.dock_bounds(expanded)
        if target is None:
            return
        changed = self._expanded != expanded
        if not (force or changed or target != self.window.get_bounds()):
            return

        self._expanded = expanded
        self.window.set_bounds(target)
        self.enforce_top_most()
        self.window.show_inactive()
        if focus:
            self.window.focus()
        if changed:
            logger.debug("Panel %s", "expanded" if expanded else "collapsed")
        if self.on_expanded_change:
            self.on_expanded_change(expanded)
