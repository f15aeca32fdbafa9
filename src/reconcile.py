"""
Turns whatever is on disk (or arrives from the panel) into a CanonicalState.

``reconcile`` accepts any value and never raises. Running it on its own
output returns an equal state: ids and timestamps generated on the first
pass are written into the result, so later passes keep them.
"""

import copy
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from constants import DEFAULT_TOOL, TIMELINE_LIMIT
from state_schema import (
    DOCK_SIDES,
    KNOWN_STATE_KEYS,
    OUTCOMES,
    CanonicalState,
    Milestone,
    Note,
    Preferences,
    PromptRecord,
    Session,
    Suggestion,
    TimelineEntry,
    advance_timestamp,
    new_id,
    now_iso,
    timestamp_sort_key,
)
from text_filters import safe_text, slugify

logger = logging.getLogger(__name__)

MAX_TAGS = 12
MAX_TAG_LENGTH = 40
DEFAULT_NOTE_TITLE = "Scratchpad"
MIGRATED_NOTE_TITLE = "Migrated note"


# Input variants for the notes field ---------------------------------------


@dataclass
class StructuredNotes:
    records: List[Any]


@dataclass
class LegacyStringNotes:
    text: str


@dataclass
class AbsentNotes:
    pass


NotesInput = Union[StructuredNotes, LegacyStringNotes, AbsentNotes]


def classify_notes_input(value: Any) -> NotesInput:
    if isinstance(value, list):
        return StructuredNotes(value)
    if isinstance(value, str):
        return LegacyStringNotes(value)
    return AbsentNotes()


# Field helpers -------------------------------------------------------------


def _field(record: Any, key: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(key)
    return None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _coerce_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return int(value)


def _normalize_tags(value: Any) -> List[str]:
    tags: List[str] = []
    for raw_tag in _as_list(value):
        tag = safe_text(raw_tag)[:MAX_TAG_LENGTH]
        if tag and tag not in tags:
            tags.append(tag)
        if len(tags) == MAX_TAGS:
            break
    return tags


# Record normalizers ------------------------------------------------------------


def normalize_note(record: Any, index: int = 0) -> Note:
    now = now_iso()
    return Note(
        id=safe_text(_field(record, "id")) or new_id(),
        title=safe_text(_field(record, "title")) or f"Note {index + 1}",
        content=str(_field(record, "content") or ""),
        tags=_normalize_tags(_field(record, "tags")),
        created_at=safe_text(_field(record, "createdAt")) or now,
        updated_at=safe_text(_field(record, "updatedAt")) or now,
    )


def default_note() -> Note:
    return normalize_note({"title": DEFAULT_NOTE_TITLE, "content": ""})


def _notes_from(variant: NotesInput) -> List[Note]:
    if isinstance(variant, StructuredNotes):
        return [normalize_note(record, index) for index, record in enumerate(variant.records)]
    if isinstance(variant, LegacyStringNotes):
        legacy = variant.text.strip()
        if not legacy:
            return []
        logger.info("Migrating legacy string notes into a single note.")
        return [normalize_note({"title": MIGRATED_NOTE_TITLE, "content": legacy})]
    return []


def session_id_for(tool: str, label: str) -> str:
    return f"session-{tool}-{slugify(label)}"


def normalize_prompt(record: Any) -> PromptRecord:
    tool = safe_text(_field(record, "tool")) or DEFAULT_TOOL
    label = safe_text(_field(record, "sessionLabel")) or f"{tool} default"
    return PromptRecord(
        id=safe_text(_field(record, "id")) or new_id(),
        text=safe_text(_field(record, "text")),
        outcome=safe_text(_field(record, "outcome")),
        tool=tool,
        session_id=safe_text(_field(record, "sessionId")) or session_id_for(tool, label),
        session_label=label,
        note_id=safe_text(_field(record, "noteId")) or None,
        created_at=safe_text(_field(record, "createdAt")) or now_iso(),
    )


def normalize_session(record: Any) -> Session:
    return Session(
        id=safe_text(_field(record, "id")) or new_id(),
        tool=safe_text(_field(record, "tool")) or DEFAULT_TOOL,
        label=safe_text(_field(record, "label")) or "Untitled session",
        prompt_count=_coerce_count(_field(record, "promptCount")),
        last_prompt_at=safe_text(_field(record, "lastPromptAt")) or now_iso(),
    )


def normalize_suggestion(record: Any) -> Suggestion:
    return Suggestion(
        prompt=safe_text(_field(record, "prompt")),
        reason=safe_text(_field(record, "reason")),
        tool=safe_text(_field(record, "tool")) or DEFAULT_TOOL,
        session_label=safe_text(_field(record, "sessionLabel")),
    )


def normalize_milestone(record: Any) -> Optional[Milestone]:
    label = safe_text(_field(record, "label"))
    if not label:
        return None
    return Milestone(
        id=safe_text(_field(record, "id")) or new_id(),
        label=label,
        done=bool(_field(record, "done")),
    )


def normalize_timeline_entry(record: Any) -> Optional[TimelineEntry]:
    text = safe_text(_field(record, "text"))
    if not text:
        return None
    entry_type = "note" if _field(record, "type") == "note" else "prompt"
    outcome = _field(record, "outcome")
    if outcome not in OUTCOMES:
        outcome = "pending"
    return TimelineEntry(
        id=safe_text(_field(record, "id")) or new_id(),
        type=entry_type,
        text=text,
        outcome=outcome if entry_type == "prompt" else None,
        source="auto-capture" if _field(record, "source") == "auto-capture" else "manual",
        created_at=safe_text(_field(record, "createdAt")) or now_iso(),
    )


def normalize_preferences(value: Any) -> Preferences:
    defaults = Preferences()
    pinned = _field(value, "pinned")
    dock = _field(value, "dock")
    auto_capture = _field(value, "autoCapturePrompts")
    return Preferences(
        pinned=defaults.pinned if pinned is None else bool(pinned),
        dock=dock if dock in DOCK_SIDES else defaults.dock,
        auto_capture_prompts=defaults.auto_capture_prompts if auto_capture is None else bool(auto_capture),
    )


# Derived collections -------------------------------------------------------------


def build_sessions_from_prompts(prompts: List[PromptRecord]) -> List[Session]:
    """Group prompts by session, count them and keep the newest timestamp; newest session first."""
    by_id: Dict[str, Session] = {}
    for prompt in prompts:
        if not prompt.text:
            continue
        session_id = prompt.session_id or f"{prompt.tool}-{prompt.session_label}"
        existing = by_id.get(session_id)
        if existing is None:
            by_id[session_id] = Session(
                id=session_id,
                tool=prompt.tool or DEFAULT_TOOL,
                label=prompt.session_label or "Untitled session",
                prompt_count=1,
                last_prompt_at=prompt.created_at or now_iso(),
            )
            continue
        existing.prompt_count += 1
        if timestamp_sort_key(prompt.created_at) > timestamp_sort_key(existing.last_prompt_at):
            existing.last_prompt_at = prompt.created_at
    return sorted(by_id.values(), key=lambda session: timestamp_sort_key(session.last_prompt_at), reverse=True)


def order_timeline(entries: List[TimelineEntry], limit: int = TIMELINE_LIMIT) -> List[TimelineEntry]:
    seen = set()
    unique: List[TimelineEntry] = []
    for entry in entries:
        if entry.id in seen:
            continue
        seen.add(entry.id)
        unique.append(entry)
    unique.sort(key=lambda entry: timestamp_sort_key(entry.created_at))
    return unique[-limit:]


def _timeline_from_legacy(prompts: List[PromptRecord], notes: List[Note]) -> List[TimelineEntry]:
    entries: List[TimelineEntry] = []
    for prompt in prompts:
        entries.append(
            TimelineEntry(
                id=prompt.id,
                type="prompt",
                text=prompt.text,
                outcome=prompt.outcome if prompt.outcome in OUTCOMES else "pending",
                source="manual",
                created_at=prompt.created_at,
            )
        )
    for note in notes:
        content = note.content.strip()
        if not content:
            continue
        entries.append(
            TimelineEntry(
                id=note.id,
                type="note",
                text=content,
                outcome=None,
                source="manual",
                created_at=note.updated_at or note.created_at,
            )
        )
    return order_timeline(entries)


# Entry points --------------------------------------------------------------------


def _as_mapping(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, CanonicalState):
        return raw.to_dict()
    if isinstance(raw, Mapping):
        return dict(raw)
    if raw is not None:
        logger.warning("Ignoring persisted state of unexpected type %s.", type(raw).__name__)
    return {}


def reconcile(raw: Any) -> CanonicalState:
    parsed = _as_mapping(raw)
    now = now_iso()

    notes = _notes_from(classify_notes_input(parsed.get("notes")))
    if not notes:
        notes = [default_note()]

    active_note_id = parsed.get("activeNoteId")
    if not any(note.id == active_note_id for note in notes):
        active_note_id = notes[0].id

    prompts = [normalize_prompt(record) for record in _as_list(parsed.get("prompts"))]
    prompts = [prompt for prompt in prompts if prompt.text]

    persisted_sessions = _as_list(parsed.get("sessions"))
    if persisted_sessions:
        sessions = [normalize_session(record) for record in persisted_sessions]
    else:
        sessions = build_sessions_from_prompts(prompts)

    goals = [safe_text(goal) for goal in _as_list(parsed.get("goals"))]
    goals = [goal for goal in goals if goal]

    suggestions = [normalize_suggestion(record) for record in _as_list(parsed.get("suggestions"))]
    suggestions = [item for item in suggestions if item.prompt]

    if isinstance(parsed.get("timeline"), list):
        entries = [normalize_timeline_entry(record) for record in parsed["timeline"]]
        timeline = order_timeline([entry for entry in entries if entry])
    else:
        timeline = _timeline_from_legacy(prompts, notes)

    if isinstance(parsed.get("milestones"), list):
        milestones = [normalize_milestone(record) for record in parsed["milestones"]]
        milestones = [item for item in milestones if item]
    else:
        milestones = [Milestone(id=new_id(), label=goal) for goal in goals]

    created_at = safe_text(parsed.get("createdAt")) or now
    extra = {key: copy.deepcopy(value) for key, value in parsed.items() if key not in KNOWN_STATE_KEYS}

    return CanonicalState(
        notes=notes,
        active_note_id=active_note_id,
        prompts=prompts,
        sessions=sessions,
        goals=goals,
        suggestions=suggestions,
        preferences=normalize_preferences(parsed.get("preferences")),
        timeline=timeline,
        session_goal=safe_text(parsed.get("sessionGoal")),
        milestones=milestones,
        session_started_at=safe_text(parsed.get("sessionStartedAt")) or created_at,
        created_at=created_at,
        updated_at=safe_text(parsed.get("updatedAt")) or now,
        extra=extra,
    )


def merge_and_reconcile(previous: Any, partial: Any) -> CanonicalState:
    """
    Apply a partial update on top of ``previous``.

    Top-level keys in ``partial`` replace the previous values wholesale, except
    ``preferences`` which is merged key by key. ``createdAt`` never changes and
    ``updatedAt`` always moves forward.
    """
    base_state = previous if isinstance(previous, CanonicalState) else reconcile(previous)
    base = base_state.to_dict()
    if not isinstance(partial, Mapping):
        if partial is not None:
            logger.warning("Ignoring malformed partial update of type %s.", type(partial).__name__)
        partial = {}

    merged = {**base, **partial}
    preferences = dict(base["preferences"])
    if isinstance(partial.get("preferences"), Mapping):
        preferences.update(partial["preferences"])
    merged["preferences"] = preferences

    next_state = reconcile(merged)
    next_state.created_at = base_state.created_at
    next_state.updated_at = advance_timestamp(base_state.updated_at)
    return next_state
