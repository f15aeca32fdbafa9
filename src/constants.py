import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Settings live next to the state file. PROMPTDOCK_HOME keeps tests and
# parallel installs away from the real profile.
SETTINGS_DIR = Path(os.environ.get("PROMPTDOCK_HOME", str(Path.home() / ".promptdock")))
STATE_PATH = SETTINGS_DIR / "thought-partner-state.json"
LOG_PATH = SETTINGS_DIR / "promptdock.log"

DEFAULT_TOOL = os.environ.get("PROMPTDOCK_DEFAULT_TOOL", "codex-cli")

PANEL_EXPANDED_WIDTH = _env_int("PROMPTDOCK_EXPANDED_WIDTH", 360)
PANEL_COLLAPSED_WIDTH = _env_int("PROMPTDOCK_COLLAPSED_WIDTH", 20)
PANEL_COLLAPSED_HEIGHT = _env_int("PROMPTDOCK_COLLAPSED_HEIGHT", 100)
PANEL_TOP_PADDING = _env_int("PROMPTDOCK_TOP_PADDING", 12)
PANEL_BOTTOM_PADDING = _env_int("PROMPTDOCK_BOTTOM_PADDING", 12)
COLLAPSE_DELAY_MS = _env_int("PROMPTDOCK_COLLAPSE_DELAY_MS", 180)
EDGE_THRESHOLD_PX = _env_int("PROMPTDOCK_EDGE_THRESHOLD_PX", 10)
HOVER_POLL_MS = _env_int("PROMPTDOCK_HOVER_POLL_MS", 120)
TOPMOST_HEARTBEAT_MS = _env_int("PROMPTDOCK_TOPMOST_HEARTBEAT_MS", 800)

CAPTURE_POLL_MS = _env_int("PROMPTDOCK_CAPTURE_POLL_MS", 1300)
CAPTURE_MIN_CHARS = _env_int("PROMPTDOCK_CAPTURE_MIN_CHARS", 24)
CAPTURE_MAX_CHARS = _env_int("PROMPTDOCK_CAPTURE_MAX_CHARS", 5000)
CAPTURE_MAX_WORDS = _env_int("PROMPTDOCK_CAPTURE_MAX_WORDS", 900)
CAPTURE_DEDUPE_WINDOW_SECONDS = _env_int("PROMPTDOCK_DEDUPE_WINDOW_SECONDS", 8 * 60)

TIMELINE_LIMIT = 500
SUGGESTION_LIMIT = 6

GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
GROQ_MODEL = os.environ.get("GROQ_MODEL", "llama-3.3-70b-versatile")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")
# Empty means "pick whichever provider has a key, Groq first".
MODEL_PROVIDER = os.environ.get("PROMPTDOCK_MODEL_PROVIDER", "").strip().lower()
