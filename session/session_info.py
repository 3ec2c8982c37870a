"""Persisted session information.

The transport keeps its own credentials across restarts, so the service
must remember when the session was last authenticated to compute its age.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class SessionInfo(BaseModel):
    last_auth: Optional[datetime] = None
    last_alert_at: Optional[datetime] = None
    phone: Optional[str] = None


class SessionInfoStore:
    """JSON file holding the last authentication time."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> SessionInfo:
        if not self.path.exists():
            return SessionInfo()
        try:
            return SessionInfo.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError, OSError) as e:
            logger.warning(f"Ignoring unreadable session info {self.path}: {e}")
            return SessionInfo()

    def save(self, info: SessionInfo) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(info.model_dump(mode="json"), indent=2), encoding="utf-8")
        tmp.replace(self.path)
