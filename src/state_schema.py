from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from constants import DEFAULT_TOOL

OUTCOMES = ("implemented", "partial", "failed", "pending")
ENTRY_TYPES = ("prompt", "note")
ENTRY_SOURCES = ("manual", "auto-capture")
DOCK_SIDES = ("left", "right")


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def iso_from_epoch(seconds: float) -> str:
    return format_timestamp(datetime.fromtimestamp(seconds, tz=timezone.utc))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string; anything unparseable yields None."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_sort_key(value: Any) -> float:
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else 0.0


def advance_timestamp(previous: Optional[str]) -> str:
    """Return the current time, nudged past ``previous`` so writes always move forward."""
    current = datetime.now(timezone.utc)
    # Stored stamps carry milliseconds only; compare at that precision.
    current = current.replace(microsecond=current.microsecond // 1000 * 1000)
    last = parse_timestamp(previous)
    if last is not None and current <= last:
        try:
            current = last + timedelta(milliseconds=1)
        except OverflowError:
            # Nothing sorts after datetime.max; restart from the clock.
            pass
    return format_timestamp(current)


@dataclass
class Rect:
    x: int
    y: int
    width: int
    height: int

    def contains(self, point: "Point") -> bool:
        return (
            self.x <= point.x <= self.x + self.width
            and self.y <= point.y <= self.y + self.height
        )

    @property
    def center(self) -> "Point":
        return Point(self.x + self.width // 2, self.y + self.height // 2)

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class Point:
    x: int
    y: int


@dataclass
class Note:
    id: str
    title: str
    content: str
    tags: List[str]
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class PromptRecord:
    id: str
    text: str
    outcome: str
    tool: str
    session_id: str
    session_label: str
    note_id: Optional[str]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "outcome": self.outcome,
            "tool": self.tool,
            "sessionId": self.session_id,
            "sessionLabel": self.session_label,
            "noteId": self.note_id,
            "createdAt": self.created_at,
        }


@dataclass
class Session:
    id: str
    tool: str
    label: str
    prompt_count: int
    last_prompt_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.tool,
            "label": self.label,
            "promptCount": self.prompt_count,
            "lastPromptAt": self.last_prompt_at,
        }


@dataclass
class Suggestion:
    prompt: str
    reason: str = ""
    tool: str = DEFAULT_TOOL
    session_label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "reason": self.reason,
            "tool": self.tool,
            "sessionLabel": self.session_label,
        }


@dataclass
class Milestone:
    id: str
    label: str
    done: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "done": self.done}


@dataclass
class TimelineEntry:
    """One prompt or note on the session timeline. Only ``outcome`` may change after creation."""

    id: str
    type: str
    text: str
    outcome: Optional[str]
    source: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "text": self.text,
            "outcome": self.outcome,
            "source": self.source,
            "createdAt": self.created_at,
        }


@dataclass
class Preferences:
    pinned: bool = False
    dock: str = "right"
    auto_capture_prompts: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pinned": self.pinned,
            "dock": self.dock,
            "autoCapturePrompts": self.auto_capture_prompts,
        }


@dataclass
class CanonicalState:
    """
    The single reconciled representation of everything the overlay persists.

    Built only by ``reconcile``; ``to_dict`` yields the on-disk JSON shape.
    Unknown top-level keys from the file ride along in ``extra`` so fields
    written by newer panels are not lost on the next save.
    """

    notes: List[Note]
    active_note_id: str
    prompts: List[PromptRecord]
    sessions: List[Session]
    goals: List[str]
    suggestions: List[Suggestion]
    preferences: Preferences
    timeline: List[TimelineEntry]
    session_goal: str
    milestones: List[Milestone]
    session_started_at: str
    created_at: str
    updated_at: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "notes": [note.to_dict() for note in self.notes],
                "activeNoteId": self.active_note_id,
                "prompts": [prompt.to_dict() for prompt in self.prompts],
                "sessions": [session.to_dict() for session in self.sessions],
                "goals": list(self.goals),
                "suggestions": [item.to_dict() for item in self.suggestions],
                "preferences": self.preferences.to_dict(),
                "timeline": [entry.to_dict() for entry in self.timeline],
                "sessionGoal": self.session_goal,
                "milestones": [milestone.to_dict() for milestone in self.milestones],
                "sessionStartedAt": self.session_started_at,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        return payload

    def active_note(self) -> Note:
        return next((note for note in self.notes if note.id == self.active_note_id), self.notes[0])


KNOWN_STATE_KEYS = frozenset(
    {
        "notes",
        "activeNoteId",
        "prompts",
        "sessions",
        "goals",
        "suggestions",
        "preferences",
        "timeline",
        "sessionGoal",
        "milestones",
        "sessionStartedAt",
        "createdAt",
        "updatedAt",
    }
)
