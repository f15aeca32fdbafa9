import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from constants import TIMELINE_LIMIT
from reconcile import merge_and_reconcile, reconcile
from state_schema import (
    OUTCOMES,
    CanonicalState,
    TimelineEntry,
    iso_from_epoch,
    new_id,
    parse_timestamp,
    timestamp_sort_key,
)
from state_store import StateStore
from text_filters import normalize_for_hash, safe_text

logger = logging.getLogger(__name__)


class StateService:
    """Owns the single in-memory copy of the canonical state.

    Every mutation is merge, reconcile, write, then swap, all under one lock.
    If the write fails the in-memory copy is left as it was and the OSError
    reaches the caller.
    """

    def __init__(self, store: Optional[StateStore] = None) -> None:
        self.store = store or StateStore()
        self._state: Optional[CanonicalState] = None
        self._lock = threading.Lock()
        self._listeners: list[Callable[[CanonicalState], None]] = []

    # Reads -----------------------------------------------------------------

    def load(self) -> CanonicalState:
        existed = self.store.exists()
        state = reconcile(self.store.load())
        if not existed:
            try:
                self.store.save(state.to_dict())
            except OSError as exc:
                logger.warning("Could not write initial state to %s: %s", self.store.path, exc)
        with self._lock:
            self._state = state
        logger.info("Loaded state with %d notes and %d timeline entries", len(state.notes), len(state.timeline))
        return state

    def get_state(self) -> CanonicalState:
        with self._lock:
            state = self._state
        return state if state is not None else self.load()

    def add_listener(self, callback: Callable[[CanonicalState], None]) -> None:
        self._listeners.append(callback)

    # Mutations ---------------------------------------------------------------

    def update_state(self, partial: Any) -> CanonicalState:
        return self._mutate(lambda _state: partial)

    def add_timeline_entry(self, text: str, *, entry_type: str = "prompt", outcome: str = "pending") -> CanonicalState:
        """Log a manual prompt or note from the composer."""

        def build(state: CanonicalState) -> Dict[str, Any]:
            entry = {
                "id": new_id(),
                "type": entry_type,
                "text": safe_text(text),
                "outcome": outcome if outcome in OUTCOMES else "pending",
                "source": "manual",
                "createdAt": self._next_created_at(state, time.time()),
            }
            timeline = [item.to_dict() for item in state.timeline] + [entry]
            return {"timeline": timeline[-TIMELINE_LIMIT:]}

        return self._mutate(build)

    def set_entry_outcome(self, entry_id: str, outcome: str) -> CanonicalState:
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown outcome {outcome!r}")

        def build(state: CanonicalState) -> Dict[str, Any]:
            timeline = []
            for item in state.timeline:
                data = item.to_dict()
                if item.id == entry_id and item.type == "prompt":
                    data["outcome"] = outcome
                timeline.append(data)
            return {"timeline": timeline}

        return self._mutate(build)

    def set_session_goal(self, goal: str) -> CanonicalState:
        return self._mutate(lambda _state: {"sessionGoal": safe_text(goal)})

    def add_milestone(self, label: str) -> CanonicalState:
        label = safe_text(label)
        if not label:
            raise ValueError("Milestone label is empty")

        def build(state: CanonicalState) -> Dict[str, Any]:
            milestones = [item.to_dict() for item in state.milestones]
            milestones.append({"id": new_id(), "label": label, "done": False})
            return {"milestones": milestones}

        return self._mutate(build)

    def toggle_milestone(self, milestone_id: str) -> CanonicalState:
        def build(state: CanonicalState) -> Dict[str, Any]:
            milestones = []
            for item in state.milestones:
                data = item.to_dict()
                if item.id == milestone_id:
                    data["done"] = not item.done
                milestones.append(data)
            return {"milestones": milestones}

        return self._mutate(build)

    def append_timeline_entry(
        self,
        text: str,
        *,
        source: str = "auto-capture",
        created_at: Optional[float] = None,
        repeat_window_seconds: Optional[float] = None,
    ) -> Optional[TimelineEntry]:
        """
        Append a captured prompt unless the newest timeline entry already holds
        the same text.

        With ``repeat_window_seconds`` the newest-entry check only applies when
        that entry is younger than the window, so a prompt copied again much
        later is logged again.
        """
        normalized = normalize_for_hash(text)
        if not normalized:
            return None

        current = self.get_state()
        with self._lock:
            state = self._state or current
            latest = state.timeline[-1] if state.timeline else None
            if latest and normalize_for_hash(latest.text) == normalized:
                if repeat_window_seconds is None or self._is_recent(latest, created_at, repeat_window_seconds):
                    logger.debug("Skipping capture that repeats the newest timeline entry.")
                    return None

            entry = TimelineEntry(
                id=new_id(),
                type="prompt",
                text=safe_text(text),
                outcome="pending",
                source=source,
                created_at=self._next_created_at(state, created_at if created_at is not None else time.time()),
            )
            payload = entry.to_dict()
            timeline = [item.to_dict() for item in state.timeline][-TIMELINE_LIMIT:]
            timeline.append(payload)
            next_state = self._commit(state, {"timeline": timeline})

        stored = next((item for item in next_state.timeline if item.id == entry.id), None)
        self._notify(next_state)
        return stored

    # Internal helpers ------------------------------------------------------------

    def _mutate(self, build: Callable[[CanonicalState], Any]) -> CanonicalState:
        """Read, build the partial update and commit it under one lock acquisition."""
        current = self.get_state()
        with self._lock:
            state = self._state or current
            next_state = self._commit(state, build(state))
        self._notify(next_state)
        return next_state

    def _commit(self, previous: CanonicalState, partial: Any) -> CanonicalState:
        next_state = merge_and_reconcile(previous, partial)
        self.store.save(next_state.to_dict())
        self._state = next_state
        return next_state

    def _notify(self, state: CanonicalState) -> None:
        for callback in list(self._listeners):
            callback(state)

    @staticmethod
    def _is_recent(entry: TimelineEntry, now: Optional[float], window_seconds: float) -> bool:
        created = parse_timestamp(entry.created_at)
        if created is None or now is None:
            return True
        return now - created.timestamp() <= window_seconds

    @staticmethod
    def _next_created_at(state: CanonicalState, moment: float) -> str:
        # A clock stepped backwards must not sort a new entry behind older ones.
        if state.timeline:
            moment = max(moment, timestamp_sort_key(state.timeline[-1].created_at))
        return iso_from_epoch(moment)
