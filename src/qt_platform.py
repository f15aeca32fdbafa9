import logging
import platform
from typing import Callable, Optional, Set

from PyQt5 import QtCore, QtGui, QtWidgets, sip

from capture import ClipboardReadError, ClipboardSource
from dock import PanelWindow, ScreenProvider, WindowOperationError
from scheduling import ScheduledHandle, Scheduler
from state_schema import Point, Rect

try:
    import objc  # type: ignore
    from AppKit import (  # type: ignore
        NSFloatingWindowLevel,
        NSScreenSaverWindowLevel,
        NSWindowCollectionBehaviorCanJoinAllSpaces,
        NSWindowCollectionBehaviorFullScreenAuxiliary,
        NSWindowCollectionBehaviorStationary,
    )
except ImportError:  # pragma: no cover - optional on non-mac systems
    objc = None
    NSFloatingWindowLevel = None
    NSScreenSaverWindowLevel = None
    NSWindowCollectionBehaviorCanJoinAllSpaces = None
    NSWindowCollectionBehaviorFullScreenAuxiliary = None
    NSWindowCollectionBehaviorStationary = None

logger = logging.getLogger(__name__)

IS_MACOS = platform.system() == "Darwin"


class _QtTimerHandle(ScheduledHandle):
    def __init__(self, timer: QtCore.QTimer, owner: "QtScheduler") -> None:
        self._timer = timer
        self._owner = owner

    @property
    def active(self) -> bool:
        return not sip.isdeleted(self._timer) and self._timer.isActive()

    def cancel(self) -> None:
        if sip.isdeleted(self._timer):
            return
        self._timer.stop()
        self._owner._release(self._timer)


class QtScheduler(Scheduler):
    """QTimer-backed scheduler; everything runs on the GUI thread."""

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        self.parent = parent
        self._timers: Set[QtCore.QTimer] = set()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledHandle:
        timer = self._make_timer(single_shot=True)

        def fire() -> None:
            self._release(timer)
            callback()

        timer.timeout.connect(fire)
        timer.start(max(int(delay_ms), 0))
        return _QtTimerHandle(timer, self)

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> ScheduledHandle:
        timer = self._make_timer(single_shot=False)
        timer.timeout.connect(callback)
        timer.start(max(int(interval_ms), 1))
        return _QtTimerHandle(timer, self)

    def _make_timer(self, *, single_shot: bool) -> QtCore.QTimer:
        timer = QtCore.QTimer(self.parent)
        timer.setSingleShot(single_shot)
        self._timers.add(timer)
        return timer

    def _release(self, timer: QtCore.QTimer) -> None:
        if timer in self._timers:
            self._timers.discard(timer)
            timer.deleteLater()


class QtClipboardSource(ClipboardSource):
    def __init__(self, app: Optional[QtWidgets.QApplication] = None) -> None:
        self.app = app

    def read_text(self) -> str:
        clipboard = (self.app or QtWidgets.QApplication.instance()).clipboard()
        if clipboard is None:
            raise ClipboardReadError("No clipboard available.")
        mime = clipboard.mimeData(QtGui.QClipboard.Clipboard)
        if mime is None:
            raise ClipboardReadError("Clipboard data unavailable.")
        return clipboard.text(QtGui.QClipboard.Clipboard)


def _rect_from_qrect(rect: QtCore.QRect) -> Rect:
    return Rect(rect.x(), rect.y(), rect.width(), rect.height())


class QtScreenProvider(ScreenProvider):
    def cursor_position(self) -> Optional[Point]:
        pos = QtGui.QCursor.pos()
        if pos is None:
            return None
        return Point(pos.x(), pos.y())

    def nearest_work_area(self, point: Point) -> Optional[Rect]:
        qpoint = QtCore.QPoint(point.x, point.y)
        screen = QtGui.QGuiApplication.screenAt(qpoint)
        if screen is None:
            screens = QtGui.QGuiApplication.screens()
            if not screens:
                return None
            screen = min(screens, key=lambda item: _distance_to_rect(point, item.geometry()))
        area = screen.availableGeometry()
        if area.isEmpty():
            return None
        return _rect_from_qrect(area)


def _distance_to_rect(point: Point, rect: QtCore.QRect) -> int:
    dx = max(rect.left() - point.x, 0, point.x - rect.right())
    dy = max(rect.top() - point.y, 0, point.y - rect.bottom())
    return dx * dx + dy * dy


class QtPanelWindow(PanelWindow):
    """Adapts a frameless QWidget to the dock controller's window contract."""

    def __init__(self, widget: QtWidgets.QWidget) -> None:
        self.widget = widget

    def is_destroyed(self) -> bool:
        return self.widget is None or sip.isdeleted(self.widget)

    def get_bounds(self) -> Rect:
        return _rect_from_qrect(self.widget.geometry())

    def set_bounds(self, bounds: Rect) -> None:
        self.widget.setGeometry(bounds.x, bounds.y, bounds.width, bounds.height)

    def set_always_on_top(self, level: str) -> None:
        if not self.widget.windowFlags() & QtCore.Qt.WindowStaysOnTopHint:
            # Changing window flags hides the window; show it again without focus.
            self.widget.setWindowFlag(QtCore.Qt.WindowStaysOnTopHint, True)
            self.show_inactive()
        ns_window = self._ns_window()
        if ns_window is None:
            return
        ns_level = NSScreenSaverWindowLevel if level == "screen-saver" else NSFloatingWindowLevel
        try:
            ns_window.setLevel_(ns_level)
        except objc.error as exc:
            raise WindowOperationError(f"setLevel refused: {exc}") from exc

    def move_top(self) -> None:
        self.widget.raise_()

    def set_visible_on_all_workspaces(self, visible_on_full_screen: bool) -> None:
        ns_window = self._ns_window()
        if ns_window is None:
            return
        behavior = NSWindowCollectionBehaviorCanJoinAllSpaces | NSWindowCollectionBehaviorStationary
        if visible_on_full_screen:
            behavior |= NSWindowCollectionBehaviorFullScreenAuxiliary
        try:
            ns_window.setCollectionBehavior_(behavior)
        except objc.error as exc:
            raise WindowOperationError(f"setCollectionBehavior refused: {exc}") from exc

    def show_inactive(self) -> None:
        self.widget.setAttribute(QtCore.Qt.WA_ShowWithoutActivating, True)
        if not self.widget.isVisible():
            self.widget.show()

    def focus(self) -> None:
        self.widget.raise_()
        self.widget.activateWindow()

    def _ns_window(self):
        if not IS_MACOS or objc is None:
            return None
        try:
            view = objc.objc_object(c_void_p=int(self.widget.winId()))
            return view.window()
        except (objc.error, ValueError) as exc:
            logger.debug("NSWindow lookup failed: %s", exc)
            return None
