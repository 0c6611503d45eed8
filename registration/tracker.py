"""
Asset Provenance Registry - Registration Tracker

Keeps a bounded in-memory history of registration attempts and summarizes it.
"""

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


MAX_TRACKED_ATTEMPTS = 100
RECENT_FAILURE_COUNT = 5


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class RegistrationAttempt:
    """One registration attempt as seen by the caller."""
    status: AttemptStatus
    name: Optional[str] = None
    asset_id: Optional[str] = None
    token_id: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration_ms: Optional[float] = None
    attempt_id: str = field(default_factory=lambda: f"reg_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "name": self.name,
            "asset_id": self.asset_id,
            "token_id": self.token_id,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "error_code": self.error_code,
            "duration_ms": self.duration_ms
        }


class RegistrationTracker:
    """Thread-safe, bounded history of registration attempts, newest first."""

    def __init__(self, max_attempts: int = MAX_TRACKED_ATTEMPTS):
        self._attempts: Deque[RegistrationAttempt] = deque(maxlen=max_attempts)
        self._lock = threading.Lock()

    def record(self, attempt: RegistrationAttempt) -> RegistrationAttempt:
        with self._lock:
            self._attempts.appendleft(attempt)
        return attempt

    def attempts(self) -> List[RegistrationAttempt]:
        with self._lock:
            return list(self._attempts)

    def clear(self):
        with self._lock:
            self._attempts.clear()

    def get_stats(self) -> Dict[str, Any]:
        """
        Summarize tracked attempts.

        Returns:
            Totals, success rate in percent, average duration in milliseconds,
            and the most recent failures
        """
        attempts = self.attempts()
        total = len(attempts)
        successes = sum(1 for a in attempts if a.status == AttemptStatus.SUCCESS)
        failures = [a for a in attempts if a.status == AttemptStatus.FAILURE]
        durations = [a.duration_ms for a in attempts if a.duration_ms is not None]

        return {
            "total": total,
            "success": successes,
            "failure": len(failures),
            "success_rate": round(successes / total * 100, 1) if total else 0.0,
            "average_duration_ms": round(sum(durations) / len(durations)) if durations else 0,
            "recent_failures": [
                {
                    "timestamp": a.timestamp.isoformat(),
                    "error": a.error or "Unknown error",
                    "error_code": a.error_code,
                    "name": a.name
                }
                for a in failures[:RECENT_FAILURE_COUNT]
            ]
        }
