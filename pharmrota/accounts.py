from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class CurrentUser(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = "user"

    @property
    def display_name(self) -> str:
        return self.name or self.email or "Unknown User"


class CurrentUserStore:
    """Cached signed-in user kept as a small JSON file.

    A file that cannot be read back is deleted and the caller is treated as
    signed out.
    """

    def __init__(self, file_path: Path) -> None:
        self.file_path = file_path
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

    def get(self) -> Optional[CurrentUser]:
        if not self.file_path.exists():
            return None
        try:
            with self.file_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            return CurrentUser.model_validate(data)
        except (json.JSONDecodeError, ValidationError, UnicodeDecodeError) as exc:
            logger.warning("Discarding corrupt cached user at %s: %s", self.file_path, exc)
            self.clear()
            return None

    def save(self, user: CurrentUser) -> None:
        with self.file_path.open("w", encoding="utf-8") as handle:
            json.dump(user.model_dump(), handle, indent=2)

    def clear(self) -> None:
        self.file_path.unlink(missing_ok=True)


class AuditLogger:
    """Append-only JSON line logger for rota publishing and editing events."""

    def __init__(self, file_path: Path) -> None:
        self.file_path = file_path
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            self.file_path.touch()

    def log(
        self,
        event: str,
        username: Optional[str],
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "event": event,
            "username": username,
        }
        if details:
            entry["details"] = details

        with self.file_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=str))
            handle.write("\n")
