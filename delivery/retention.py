"""Retention sweep for cached artifacts.

Delivered artifacts are deleted right after the send; anything left behind
(documents never delivered, stray files) is removed once it is older than
the retention window.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from core.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    deleted: List[str] = field(default_factory=list)
    bytes_freed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


class ArtifactRetention:

    def __init__(
        self,
        store: ArtifactStore,
        retention_days: int = 30,
        clock: Optional[Callable[[], float]] = None,
    ):
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        self.store = store
        self.retention_days = retention_days
        self._clock = clock or time.time

    def sweep(self) -> SweepResult:
        """Delete artifacts whose modification time is past the window."""
        cutoff = self._clock() - self.retention_days * 86400
        result = SweepResult()

        for path in self.store.list_artifacts():
            try:
                stat = path.stat()
                if stat.st_mtime >= cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove {path.name}: {e}")
                result.errors.append(f"{path.name}: {e}")
                continue
            result.deleted.append(path.name)
            result.bytes_freed += stat.st_size

        logger.info(
            f"Retention sweep removed {result.deleted_count} artifact(s), "
            f"{result.bytes_freed / 1024 / 1024:.2f} MB freed"
        )
        return result
