import html
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv
from PyQt5 import QtCore, QtGui, QtWidgets
from qt_material import apply_stylesheet

from constants import LOG_PATH, SETTINGS_DIR
from qt_platform import QtClipboardSource, QtPanelWindow, QtScheduler, QtScreenProvider
from runtime import OverlayRuntime
from state_schema import OUTCOMES, CanonicalState, parse_timestamp

logger = logging.getLogger(__name__)

HOTKEY = "Ctrl+Shift+Space"


class SignalBus(QtCore.QObject):
    expanded = QtCore.pyqtSignal(bool)
    captured = QtCore.pyqtSignal(dict)
    suggestions = QtCore.pyqtSignal(dict)
    status = QtCore.pyqtSignal(str)


def format_duration(start_iso: Optional[str], now: Optional[datetime] = None) -> str:
    started = parse_timestamp(start_iso)
    if started is None:
        return "00:00"
    now = now or datetime.now(timezone.utc)
    elapsed = max(0, int((now - started).total_seconds()))
    hours, remainder = divmod(elapsed, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


class PromptDockPanel(QtWidgets.QWidget):
    """Frameless edge panel: timeline, composer and prompt suggestions."""

    def __init__(self):
        super().__init__(
            None,
            QtCore.Qt.FramelessWindowHint | QtCore.Qt.Tool | QtCore.Qt.WindowStaysOnTopHint,
        )
        self.setWindowTitle("PromptDock")
        self.setAttribute(QtCore.Qt.WA_ShowWithoutActivating, True)
        self.runtime: Optional[OverlayRuntime] = None

        self.bus = SignalBus()
        self.bus.expanded.connect(self._render_expanded)
        self.bus.captured.connect(self._handle_captured)
        self.bus.suggestions.connect(self._render_suggestions)
        self.bus.status.connect(self._update_status)

        self._build_layout()

        self.clock_timer = QtCore.QTimer(self)
        self.clock_timer.timeout.connect(self._render_timer)
        self.clock_timer.start(1000)

    def attach(self, runtime: OverlayRuntime) -> None:
        self.runtime = runtime
        self.render_state(runtime.get_state())

    # UI ------------------------------------------------------------------

    def _build_layout(self) -> None:
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        self.body = QtWidgets.QWidget()
        body_layout = QtWidgets.QVBoxLayout(self.body)
        body_layout.setContentsMargins(12, 12, 12, 12)
        body_layout.setSpacing(10)

        header = QtWidgets.QHBoxLayout()
        title = QtWidgets.QLabel("PromptDock")
        title.setFont(QtGui.QFont("Inter", 14, QtGui.QFont.Bold))
        header.addWidget(title)
        header.addStretch()
        self.timer_label = QtWidgets.QLabel("00:00")
        header.addWidget(self.timer_label)
        body_layout.addLayout(header)

        controls = QtWidgets.QHBoxLayout()
        self.pin_toggle = QtWidgets.QCheckBox("Pin")
        self.pin_toggle.toggled.connect(self._handle_pin_toggle)
        self.capture_toggle = QtWidgets.QCheckBox("Auto-capture")
        self.capture_toggle.toggled.connect(self._handle_capture_toggle)
        self.dock_combo = QtWidgets.QComboBox()
        self.dock_combo.addItem("Right", "right")
        self.dock_combo.addItem("Left", "left")
        self.dock_combo.currentIndexChanged.connect(self._handle_dock_change)
        controls.addWidget(self.pin_toggle)
        controls.addWidget(self.capture_toggle)
        controls.addStretch()
        controls.addWidget(self.dock_combo)
        body_layout.addLayout(controls)

        self.goal_input = QtWidgets.QLineEdit()
        self.goal_input.setPlaceholderText("Session goal")
        self.goal_input.editingFinished.connect(self._commit_goal)
        body_layout.addWidget(self.goal_input)

        milestone_header = QtWidgets.QHBoxLayout()
        self.milestone_label = QtWidgets.QLabel("Milestones")
        self.milestone_label.setStyleSheet("color: #9fbccf;")
        add_milestone_btn = QtWidgets.QPushButton("+")
        add_milestone_btn.setFixedWidth(28)
        add_milestone_btn.clicked.connect(self._add_milestone)
        milestone_header.addWidget(self.milestone_label)
        milestone_header.addStretch()
        milestone_header.addWidget(add_milestone_btn)
        body_layout.addLayout(milestone_header)

        self.milestone_list = QtWidgets.QListWidget()
        self.milestone_list.setMaximumHeight(110)
        self.milestone_list.itemChanged.connect(self._handle_milestone_changed)
        body_layout.addWidget(self.milestone_list)

        self.timeline_list = QtWidgets.QListWidget()
        self.timeline_list.setWordWrap(True)
        self.timeline_list.setContextMenuPolicy(QtCore.Qt.CustomContextMenu)
        self.timeline_list.customContextMenuRequested.connect(self._open_outcome_menu)
        body_layout.addWidget(self.timeline_list, 1)

        composer = QtWidgets.QHBoxLayout()
        self.mode_combo = QtWidgets.QComboBox()
        self.mode_combo.addItem("Prompt", "prompt")
        self.mode_combo.addItem("Note", "note")
        self.outcome_combo = QtWidgets.QComboBox()
        for outcome in OUTCOMES:
            self.outcome_combo.addItem(outcome.title(), outcome)
        self.outcome_combo.setCurrentIndex(OUTCOMES.index("pending"))
        self.mode_combo.currentIndexChanged.connect(
            lambda _: self.outcome_combo.setVisible(self.mode_combo.currentData() == "prompt")
        )
        composer.addWidget(self.mode_combo)
        composer.addWidget(self.outcome_combo)
        body_layout.addLayout(composer)

        self.composer_input = QtWidgets.QLineEdit()
        self.composer_input.setPlaceholderText("Log a prompt or note, then press Enter")
        self.composer_input.returnPressed.connect(self._submit_entry)
        body_layout.addWidget(self.composer_input)

        suggestion_row = QtWidgets.QHBoxLayout()
        self.evolve_btn = QtWidgets.QPushButton("Evolve prompts")
        self.evolve_btn.clicked.connect(self._request_suggestions)
        self.status_label = QtWidgets.QLabel("Idle")
        self.status_label.setAlignment(QtCore.Qt.AlignRight | QtCore.Qt.AlignVCenter)
        suggestion_row.addWidget(self.evolve_btn)
        suggestion_row.addWidget(self.status_label, 1)
        body_layout.addLayout(suggestion_row)

        self.suggestion_view = QtWidgets.QTextBrowser()
        self.suggestion_view.setMaximumHeight(180)
        body_layout.addWidget(self.suggestion_view)

        self.handle = QtWidgets.QFrame()
        self.handle.setStyleSheet("background-color: #10b981; border-radius: 4px;")

        layout.addWidget(self.body)
        layout.addWidget(self.handle)
        self._render_expanded(False)

    # Qt events -------------------------------------------------------------

    def enterEvent(self, event) -> None:
        if self.runtime:
            self.runtime.set_hover(True)
        super().enterEvent(event)

    def leaveEvent(self, event) -> None:
        if self.runtime:
            self.runtime.set_hover(False)
        super().leaveEvent(event)

    def changeEvent(self, event) -> None:
        if event.type() == QtCore.QEvent.ActivationChange and not self.isActiveWindow() and self.runtime:
            self.runtime.handle_blur()
        super().changeEvent(event)

    def closeEvent(self, event) -> None:
        if self.runtime:
            self.runtime.stop()
        super().closeEvent(event)

    # Actions -------------------------------------------------------------

    def _handle_pin_toggle(self, checked: bool) -> None:
        if not self.runtime or self.runtime.get_state().preferences.pinned == checked:
            return
        self._run_mutation(lambda: self.runtime.set_pinned(checked))

    def _handle_capture_toggle(self, checked: bool) -> None:
        if not self.runtime or self.runtime.get_state().preferences.auto_capture_prompts == checked:
            return
        self._run_mutation(lambda: self.runtime.update_state({"preferences": {"autoCapturePrompts": checked}}))

    def _handle_dock_change(self, index: int) -> None:
        dock = self.dock_combo.itemData(index)
        if not self.runtime or self.runtime.get_state().preferences.dock == dock:
            return
        self._run_mutation(lambda: self.runtime.set_dock(dock))

    def _commit_goal(self) -> None:
        goal = self.goal_input.text().strip()
        if not self.runtime or self.runtime.get_state().session_goal == goal:
            return
        self._run_mutation(lambda: self.runtime.state_service.set_session_goal(goal))

    def _add_milestone(self) -> None:
        if not self.runtime:
            return
        label, accepted = QtWidgets.QInputDialog.getText(self, "Milestone", "New milestone label:")
        if accepted and label.strip():
            self._run_mutation(lambda: self.runtime.state_service.add_milestone(label))

    def _handle_milestone_changed(self, item: QtWidgets.QListWidgetItem) -> None:
        if not self.runtime:
            return
        milestone_id, done = item.data(QtCore.Qt.UserRole)
        if (item.checkState() == QtCore.Qt.Checked) != done:
            # Re-rendering clears the list, so leave the item's own signal first.
            QtCore.QTimer.singleShot(
                0, lambda: self._run_mutation(lambda: self.runtime.state_service.toggle_milestone(milestone_id))
            )

    def _submit_entry(self) -> None:
        text = self.composer_input.text().strip()
        if not text or not self.runtime:
            return
        entry_type = self.mode_combo.currentData()
        outcome = self.outcome_combo.currentData()
        state = self._run_mutation(
            lambda: self.runtime.state_service.add_timeline_entry(text, entry_type=entry_type, outcome=outcome)
        )
        if state is not None:
            self.composer_input.clear()

    def _open_outcome_menu(self, position: QtCore.QPoint) -> None:
        item = self.timeline_list.itemAt(position)
        if item is None or not self.runtime:
            return
        entry_id, entry_type = item.data(QtCore.Qt.UserRole)
        if entry_type != "prompt":
            return
        menu = QtWidgets.QMenu(self)
        for outcome in OUTCOMES:
            action = menu.addAction(outcome.title())
            action.setData(outcome)
        chosen = menu.exec_(self.timeline_list.mapToGlobal(position))
        if chosen is not None:
            self._run_mutation(lambda: self.runtime.state_service.set_entry_outcome(entry_id, chosen.data()))

    def _request_suggestions(self) -> None:
        if not self.runtime:
            return
        self.evolve_btn.setEnabled(False)
        self.bus.status.emit("Evolving prompts…")
        snapshot = self.runtime.get_state().to_dict()
        thread = threading.Thread(target=self._run_suggestions, args=(snapshot,), daemon=True)
        thread.start()

    def _run_suggestions(self, snapshot: dict) -> None:
        try:
            payload = self.runtime.evolve_prompts(snapshot).to_dict()
        except Exception as exc:
            logger.exception("Suggestion worker failed: %s", exc)
            payload = {"source": "error", "items": [], "message": "Could not build suggestions, see the log."}
        self.bus.suggestions.emit(payload)

    def _run_mutation(self, operation) -> Optional[CanonicalState]:
        try:
            state = operation()
        except OSError as exc:
            logger.error("Failed to save state: %s", exc)
            QtWidgets.QMessageBox.critical(self, "Save Failed", f"Your change could not be saved:\n{exc}")
            return None
        self.render_state(state)
        return state

    # Callbacks -----------------------------------------------------------

    def render_state(self, state: CanonicalState) -> None:
        for widget, value in (
            (self.pin_toggle, state.preferences.pinned),
            (self.capture_toggle, state.preferences.auto_capture_prompts),
        ):
            widget.blockSignals(True)
            widget.setChecked(value)
            widget.blockSignals(False)
        self.dock_combo.blockSignals(True)
        self.dock_combo.setCurrentIndex(self.dock_combo.findData(state.preferences.dock))
        self.dock_combo.blockSignals(False)

        if not self.goal_input.hasFocus():
            self.goal_input.setText(state.session_goal)

        done = sum(1 for milestone in state.milestones if milestone.done)
        self.milestone_label.setText(f"Milestones {done}/{len(state.milestones)}")
        self.milestone_list.blockSignals(True)
        self.milestone_list.clear()
        for milestone in state.milestones:
            item = QtWidgets.QListWidgetItem(milestone.label)
            item.setFlags(item.flags() | QtCore.Qt.ItemIsUserCheckable)
            item.setCheckState(QtCore.Qt.Checked if milestone.done else QtCore.Qt.Unchecked)
            item.setData(QtCore.Qt.UserRole, (milestone.id, milestone.done))
            self.milestone_list.addItem(item)
        self.milestone_list.blockSignals(False)

        self.timeline_list.clear()
        for entry in state.timeline:
            badge = entry.outcome or "note"
            marker = "⟳ " if entry.source == "auto-capture" else ""
            item = QtWidgets.QListWidgetItem(f"[{badge}] {marker}{entry.text}")
            item.setData(QtCore.Qt.UserRole, (entry.id, entry.type))
            self.timeline_list.addItem(item)
        self.timeline_list.scrollToBottom()
        self._render_timer()

    def _render_timer(self) -> None:
        if self.runtime:
            self.timer_label.setText(format_duration(self.runtime.get_state().session_started_at))

    def _render_expanded(self, expanded: bool) -> None:
        self.body.setVisible(expanded)
        self.handle.setVisible(not expanded)

    def _handle_captured(self, _entry: dict) -> None:
        if self.runtime:
            self.render_state(self.runtime.get_state())

    def _render_suggestions(self, payload: dict) -> None:
        lines: List[str] = []
        for item in payload.get("items", []):
            prompt = html.escape(item.get("prompt", ""))
            reason = html.escape(item.get("reason", ""))
            tool = html.escape(item.get("tool", ""))
            lines.append(f"<p><b>{prompt}</b><br/><i>{tool}</i> · {reason}</p>")
        self.suggestion_view.setHtml("".join(lines))
        self.bus.status.emit(f"[{payload.get('source')}] {payload.get('message', '')}")
        self.evolve_btn.setEnabled(True)

    def _update_status(self, status: str) -> None:
        self.status_label.setText(status)


def configure_logging() -> None:
    SETTINGS_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(LOG_PATH),
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logging.getLogger().addHandler(console)


def main():
    load_dotenv()
    configure_logging()
    logger.info("PromptDock startup")

    app = QtWidgets.QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(True)
    apply_stylesheet(app, theme="dark_teal.xml")

    panel = PromptDockPanel()
    runtime = OverlayRuntime(
        window=QtPanelWindow(panel),
        screen=QtScreenProvider(),
        clipboard=QtClipboardSource(app),
        scheduler=QtScheduler(app),
        on_expanded_change=panel.bus.expanded.emit,
        on_capture=lambda entry: panel.bus.captured.emit(entry.to_dict()),
    )
    panel.attach(runtime)

    def watch_screen(screen: QtGui.QScreen) -> None:
        screen.availableGeometryChanged.connect(lambda _rect: runtime.handle_display_change())
        screen.logicalDotsPerInchChanged.connect(lambda _dpi: runtime.handle_display_change())

    for screen in app.screens():
        watch_screen(screen)
    app.screenAdded.connect(lambda screen: (watch_screen(screen), runtime.handle_display_change()))
    app.screenRemoved.connect(lambda _screen: runtime.handle_display_change())

    # Qt shortcuts are application-wide; OS-global registration is left to the platform.
    shortcut = QtWidgets.QShortcut(QtGui.QKeySequence(HOTKEY), panel)
    shortcut.setContext(QtCore.Qt.ApplicationShortcut)
    shortcut.activated.connect(lambda: panel.render_state(runtime.invoke_hotkey()))

    app.applicationStateChanged.connect(
        lambda state: runtime.handle_activate() if state == QtCore.Qt.ApplicationActive else None
    )
    app.aboutToQuit.connect(runtime.stop)
    runtime.start()
    sys.exit(app.exec_())


if __name__ == "__main__":
    main()
