import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from api_models import Model, ModelRequestError, create_model
from constants import DEFAULT_TOOL, SUGGESTION_LIMIT
from prompts import EVOLUTION_REQUEST, EVOLUTION_SYSTEM_PROMPT
from reconcile import normalize_suggestion, reconcile
from state_schema import Note, PromptRecord, Session, Suggestion
from text_filters import safe_text, trim_for_model

logger = logging.getLogger(__name__)

HEURISTIC_SOURCE = "heuristic"

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_LIST_MARKER_RE = re.compile(r"^[\-\d\.\)\s]+")


@dataclass
class SuggestionResult:
    source: str
    items: List[Suggestion] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "items": [item.to_dict() for item in self.items],
            "message": self.message,
        }


def heuristic_prompt_suggestions(
    notes: Sequence[Note] = (),
    prompts: Sequence[PromptRecord] = (),
    sessions: Sequence[Session] = (),
    limit: int = SUGGESTION_LIMIT,
) -> List[Suggestion]:
    """Templated next steps built around the latest prompt (or first note) when no model is available."""
    latest_note = notes[0] if notes else None
    latest_prompt = prompts[-1] if prompts else None
    hottest = sessions[0] if sessions else None
    focus_source = (latest_prompt.text if latest_prompt else "") or (latest_note.content if latest_note else "")
    focus = trim_for_model(focus_source or "current coding task", 120)
    hot_tool = hottest.tool if hottest else None

    suggestions = [
        Suggestion(
            prompt=f"Turn this objective into a thin vertical slice with acceptance criteria: {focus}",
            reason="Creates a concrete first delivery target.",
            tool=hot_tool or DEFAULT_TOOL,
            session_label=hottest.label if hottest else "delivery-slice",
        ),
        Suggestion(
            prompt=f'List likely failure modes for "{focus}" and generate one focused test per failure mode.',
            reason="Builds test coverage early and prevents regressions.",
            tool="python",
            session_label="risk-tests",
        ),
        Suggestion(
            prompt="Refactor plan: identify coupling hotspots in this implementation and propose a 3-step low-risk cleanup.",
            reason="Reduces tech debt while feature context is fresh.",
            tool=DEFAULT_TOOL,
            session_label="refactor-pass",
        ),
        Suggestion(
            prompt="Create a debugging checklist for this workflow with expected logs, checkpoints, and rollback steps.",
            reason="Makes troubleshooting faster during iteration.",
            tool=hot_tool or "bash-cli",
            session_label="debug-checklist",
        ),
        Suggestion(
            prompt=(
                f'Generate prompts to compare 2 implementation options for "{focus}" '
                "with tradeoffs in speed, reliability, and complexity."
            ),
            reason="Improves decision quality before writing more code.",
            tool=DEFAULT_TOOL,
            session_label="design-review",
        ),
        Suggestion(
            prompt="Based on the latest notes, draft the next 3 prompts I should run today in strict execution order.",
            reason="Keeps momentum and reduces context switching.",
            tool=hot_tool or DEFAULT_TOOL,
            session_label="daily-sequence",
        ),
    ]
    return suggestions[: max(limit, 0)]


def parse_model_suggestions(content: str, limit: int = SUGGESTION_LIMIT) -> List[Suggestion]:
    """Read a model reply as a JSON array, falling back to one suggestion per line."""
    text = safe_text(content)
    if not text:
        return []
    text = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text)).strip()

    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        items = [normalize_suggestion(item) for item in parsed]
        return [item for item in items if item.prompt][:limit]

    lines = [safe_text(_LIST_MARKER_RE.sub("", line)) for line in text.splitlines()]
    return [
        Suggestion(prompt=line, reason="Parsed from free-form model output.")
        for line in lines
        if line
    ][:limit]


def build_request_payload(notes: Sequence[Note], prompts: Sequence[PromptRecord], sessions: Sequence[Session]) -> Dict[str, Any]:
    return {
        "request": EVOLUTION_REQUEST,
        "notes": [
            {
                "title": trim_for_model(note.title, 80),
                "content": trim_for_model(note.content, 220),
                "tags": list(note.tags),
                "updatedAt": note.updated_at,
            }
            for note in list(notes)[:5]
        ],
        "prompts": [
            {
                "text": trim_for_model(prompt.text, 180),
                "outcome": trim_for_model(prompt.outcome, 100),
                "tool": prompt.tool,
                "sessionLabel": prompt.session_label,
                "createdAt": prompt.created_at,
            }
            for prompt in list(prompts)[-10:]
        ],
        "sessions": [session.to_dict() for session in list(sessions)[:8]],
    }


class SuggestionService:
    """Asks the configured model for the next prompts; falls back to local templates."""

    def __init__(self, model: Optional[Model] = None, *, limit: int = SUGGESTION_LIMIT, auto_create: bool = True) -> None:
        self.limit = limit
        self.model = model
        if self.model is None and auto_create:
            try:
                self.model = create_model()
            except EnvironmentError as exc:
                logger.warning("Suggestion model unavailable: %s", exc)
                self.model = None

    def evolve(self, snapshot: Any) -> SuggestionResult:
        state = reconcile(snapshot)
        notes, prompts, sessions = state.notes, state.prompts, state.sessions

        if self.model is None:
            return self._fallback(notes, prompts, sessions, "No GROQ_API_KEY or GEMINI_API_KEY set, using heuristic suggestions.")

        provider = self.model.provider
        user_prompt = json.dumps(build_request_payload(notes, prompts, sessions))
        system_prompt = EVOLUTION_SYSTEM_PROMPT.format(limit=self.limit)
        try:
            content = self.model.call_model(user_prompt=user_prompt, system_prompt=system_prompt)
        except ModelRequestError as exc:
            logger.warning("Prompt evolution via %s failed: %s", provider, exc)
            if exc.status_code is not None:
                message = f"{provider.title()} returned HTTP {exc.status_code}, using heuristic fallback."
            else:
                message = "Prompt evolution request failed, using heuristic fallback."
            return self._fallback(notes, prompts, sessions, message)

        parsed = parse_model_suggestions(content, self.limit)
        if not parsed:
            return self._fallback(
                notes, prompts, sessions, "Model response was empty or invalid JSON, using heuristic fallback."
            )
        return SuggestionResult(
            source=provider,
            items=parsed,
            message=f"Generated by {provider.title()} prompt-evolution model.",
        )

    def heuristic_result(self, snapshot: Any, message: str) -> SuggestionResult:
        state = reconcile(snapshot)
        return self._fallback(state.notes, state.prompts, state.sessions, message)

    def _fallback(self, notes, prompts, sessions, message: str) -> SuggestionResult:
        return SuggestionResult(
            source=HEURISTIC_SOURCE,
            items=heuristic_prompt_suggestions(notes, prompts, sessions, self.limit),
            message=message,
        )
