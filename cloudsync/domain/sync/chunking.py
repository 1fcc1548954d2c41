"""
Adaptive chunk-size controller for batch uploads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from cloudsync.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkTuningConfig:
    initial_size: int = 100
    min_size: int = 10
    max_size: int = 200

    @classmethod
    def from_settings(cls) -> "ChunkTuningConfig":
        return cls(
            initial_size=settings.sync_initial_chunk_size,
            min_size=settings.sync_min_chunk_size,
            max_size=settings.sync_max_chunk_size,
        )

    def __post_init__(self) -> None:
        if not 0 < self.min_size <= self.max_size:
            raise ValueError(f"Invalid chunk bounds [{self.min_size}, {self.max_size}]")


class ChunkSizer:
    """
    Call-scoped chunk size: halved on capacity failures, doubled on success,
    always inside ``[min_size, max_size]``.
    """

    def __init__(self, config: Optional[ChunkTuningConfig] = None) -> None:
        self.config = config or ChunkTuningConfig()
        self.current_size = self._clamp(self.config.initial_size)

    def _clamp(self, size: int) -> int:
        return max(self.config.min_size, min(size, self.config.max_size))

    def at_floor(self, batch_length: int) -> bool:
        """True when a batch of ``batch_length`` rows cannot be split any further."""
        return min(self.current_size, batch_length) <= self.config.min_size

    def shrink(self, batch_length: int) -> int:
        # Halve what was actually sent; a short tail batch shrinks from its own length.
        new_size = self._clamp(min(self.current_size, batch_length) // 2)
        if new_size != self.current_size:
            logger.warning("Shrinking chunk size %d -> %d", self.current_size, new_size)
        self.current_size = new_size
        return new_size

    def grow(self) -> int:
        if self.current_size < self.config.max_size:
            new_size = self._clamp(self.current_size * 2)
            logger.debug("Growing chunk size %d -> %d", self.current_size, new_size)
            self.current_size = new_size
        return self.current_size
