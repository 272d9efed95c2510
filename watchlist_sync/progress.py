from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadProgress:
    loaded_count: int = 0
    total_count: int = 0
    currently_loading: Optional[str] = None

    @property
    def percent(self) -> float:
        if self.total_count <= 0:
            return 0.0
        if self.loaded_count <= 0:
            return 0.0
        return min(max(self.loaded_count / float(self.total_count), 0.0), 1.0)

    @property
    def complete(self) -> bool:
        return self.loaded_count >= self.total_count


ProgressCallback = Callable[[LoadProgress], None]


def emit_progress(callback: Optional[ProgressCallback], progress: LoadProgress) -> None:
    if callback is None:
        return
    try:
        callback(progress)
    except Exception as exc:
        logger.debug("Progress callback failed: %s", exc, exc_info=True)
