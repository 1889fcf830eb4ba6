"""Tracks which task the user is currently working on, per project directory."""

import json
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("vtm.session")


class VTMSession:
    def __init__(self, session_path: Union[str, Path] = ".vtm-session"):
        self.session_path = Path(session_path)
        self._current_task: Optional[str] = self._load()

    def _load(self) -> Optional[str]:
        if not self.session_path.exists():
            return None
        try:
            data = json.loads(self.session_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.session_path}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return data.get("currentTask")

    def get_current_task(self) -> Optional[str]:
        return self._current_task

    def set_current_task(self, task_id: str) -> None:
        self._current_task = task_id
        self.session_path.write_text(json.dumps({"currentTask": task_id}, indent=2), encoding="utf-8")

    def clear_current_task(self) -> None:
        self._current_task = None
        if self.session_path.exists():
            self.session_path.unlink()
