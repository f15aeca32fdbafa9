"""
Lexical helpers shared by the clipboard pipeline and the state layer.

The prompt classifier is an ordered list of named predicates. The first three
are gates: any one of them failing rejects the text. The remaining ones form
an acceptance disjunction evaluated left to right; the first that holds
accepts. Changing the order changes which texts are captured.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from constants import CAPTURE_MAX_CHARS, CAPTURE_MAX_WORDS, CAPTURE_MIN_CHARS

HASH_INPUT_LIMIT = 4000
MIN_WORD_COUNT = 5

ACTION_VERBS = (
    "build",
    "create",
    "write",
    "generate",
    "fix",
    "implement",
    "refactor",
    "add",
    "debug",
    "review",
    "design",
    "optimize",
    "explain",
    "analyze",
    "plan",
    "draft",
    "help",
    "make",
)

ASSISTANT_KEYWORDS = (
    "prompt",
    "assistant",
    "llm",
    "model",
    "chatgpt",
    "claude",
    "gemini",
    "cursor",
    "codex",
    "copilot",
    "feature",
    "bug",
    "test",
    "api",
    "workflow",
)

INSTRUCTION_PHRASES = (
    "please",
    "can you",
    "how do i",
    "what is",
    "show me",
    "give me",
    "need to",
    "i want",
)

_BARE_URL_RE = re.compile(r"^[a-z]+://\S+$", re.IGNORECASE)
_ACTION_RE = re.compile(r"^(%s)\b" % "|".join(ACTION_VERBS), re.IGNORECASE)
_ASSISTANT_RE = re.compile(r"\b(%s)\b" % "|".join(ASSISTANT_KEYWORDS), re.IGNORECASE)
_INSTRUCTION_RE = re.compile(r"\b(%s)\b" % "|".join(INSTRUCTION_PHRASES), re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def safe_text(value) -> str:
    """Coerce any value to a trimmed string; None and other falsy values become ''."""
    if value is None or value is False:
        return ""
    return str(value).strip()


def normalize_for_hash(value) -> str:
    text = safe_text(value).lower()
    return _WHITESPACE_RE.sub(" ", text)[:HASH_INPUT_LIMIT]


def hash_text(value) -> str:
    return hashlib.sha1(normalize_for_hash(value).encode("utf-8")).hexdigest()


# Predicates -------------------------------------------------------------


def within_char_limits(text: str, min_chars: int = CAPTURE_MIN_CHARS, max_chars: int = CAPTURE_MAX_CHARS) -> bool:
    return min_chars <= len(text) <= max_chars


def within_word_limits(text: str, max_words: int = CAPTURE_MAX_WORDS) -> bool:
    words = text.split()
    return MIN_WORD_COUNT <= len(words) <= max_words


def not_bare_url(text: str) -> bool:
    return not _BARE_URL_RE.match(text)


def has_question_mark(text: str) -> bool:
    return "?" in text


def starts_with_action_verb(text: str) -> bool:
    return bool(_ACTION_RE.match(text))


def assistant_context_with_instruction(text: str) -> bool:
    return bool(_ASSISTANT_RE.search(text)) and bool(_INSTRUCTION_RE.search(text))


Predicate = Callable[[str], bool]


@dataclass
class Verdict:
    accepted: bool
    decided_by: Optional[str]


class PromptClassifier:
    """Decides whether clipboard text looks like something typed for an AI tool."""

    def __init__(
        self,
        *,
        min_chars: int = CAPTURE_MIN_CHARS,
        max_chars: int = CAPTURE_MAX_CHARS,
        max_words: int = CAPTURE_MAX_WORDS,
    ) -> None:
        self.gates: List[Tuple[str, Predicate]] = [
            ("within_char_limits", lambda text: within_char_limits(text, min_chars, max_chars)),
            ("within_word_limits", lambda text: within_word_limits(text, max_words)),
            ("not_bare_url", not_bare_url),
        ]
        self.acceptors: List[Tuple[str, Predicate]] = [
            ("has_question_mark", has_question_mark),
            ("starts_with_action_verb", starts_with_action_verb),
            ("assistant_context_with_instruction", assistant_context_with_instruction),
        ]

    def evaluate(self, value) -> Verdict:
        text = safe_text(value)
        if not text:
            return Verdict(False, None)
        for name, predicate in self.gates:
            if not predicate(text):
                return Verdict(False, name)
        for name, predicate in self.acceptors:
            if predicate(text):
                return Verdict(True, name)
        return Verdict(False, None)

    def is_likely_prompt(self, value) -> bool:
        return self.evaluate(value).accepted


DEFAULT_CLASSIFIER = PromptClassifier()


def is_likely_prompt(value) -> bool:
    return DEFAULT_CLASSIFIER.is_likely_prompt(value)


def slugify(value: str) -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "-", value.strip().lower())
    cleaned = re.sub(r"-{2,}", "-", cleaned).strip("-")
    return cleaned or "session"


def trim_for_model(value, max_len: int = 240) -> str:
    text = safe_text(value)
    return f"{text[:max_len]}..." if len(text) > max_len else text
