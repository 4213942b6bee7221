"""Attendance log with per-person cooldown.

A person standing in front of the kiosk is identified over and over; only
the first identification within the cooldown window becomes a check-in.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from faceid.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_COOLDOWN = 30.0  # seconds


@dataclass(frozen=True)
class AttendanceRecord:
    """One check-in.

    Attributes:
        identity: Person identified
        score: Similarity score of the identification
        checked_in_at: Check-in time (clock seconds)
        photo: Optional JPEG bytes of the face
    """

    identity: str
    score: float
    checked_in_at: float
    photo: Optional[bytes] = None


class AttendanceLog:
    """In-memory check-in log, newest first."""

    def __init__(
        self,
        cooldown: float = DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.time,
    ):
        if cooldown < 0:
            raise ValueError(f"cooldown must be >= 0, got {cooldown}")
        self.cooldown = cooldown
        self._clock = clock
        self._records: List[AttendanceRecord] = []
        self._last_check_in: Dict[str, float] = {}

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self._records)

    def record(
        self,
        identity: str,
        score: float,
        photo: Optional[bytes] = None,
        now: Optional[float] = None,
    ) -> Optional[AttendanceRecord]:
        """Record a check-in unless identity checked in within the cooldown.

        Returns:
            The new record, or None if it was suppressed by the cooldown.
        """
        now = self._clock() if now is None else now
        last = self._last_check_in.get(identity)
        if last is not None and now - last <= self.cooldown:
            logger.debug(f"Check-in for '{identity}' suppressed (cooldown)")
            return None

        entry = AttendanceRecord(identity=identity, score=score, checked_in_at=now, photo=photo)
        self._last_check_in[identity] = now
        self._records.insert(0, entry)
        logger.info(f"Check-in: {identity} ({score:.2f})")
        return entry

    def __len__(self) -> int:
        return len(self._records)
