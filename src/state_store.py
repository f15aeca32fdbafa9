import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from constants import STATE_PATH

logger = logging.getLogger(__name__)


class StateStore:
    """Reads and writes the overlay state file.

    ``load`` never raises: a missing or corrupt file yields None and the caller
    starts from defaults. ``save`` replaces the whole file and lets OSError
    propagate, since a failed write means the user's edits are not on disk.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else STATE_PATH

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read state from %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("State file %s does not hold a JSON object; ignoring it.", self.path)
            return None
        return data

    def save(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("State written to %s", self.path)
