"""In-memory counters for the visit and redemption workflows."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Deque, Dict, Tuple

from promo_ledger_api.core.clock import utcnow


@dataclass
class LedgerSnapshot:
    visits: Dict[str, int]
    points: Dict[str, int]
    redemptions: Dict[str, int]
    failures: Dict[str, int]
    recent_failures: list[Tuple[str, str, datetime]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "visits": dict(self.visits),
            "points": dict(self.points),
            "redemptions": dict(self.redemptions),
            "failures": dict(self.failures),
            "recent_failures": [
                {"workflow": workflow, "error": error, "recorded_at": timestamp.isoformat()}
                for workflow, error, timestamp in self.recent_failures
            ],
        }


class LedgerObservabilityStore:
    """Collect ledger workflow telemetry for dashboards and alerting."""

    _VISIT_KEYS = ("verified", "approved", "rejected", "conflicts")
    _POINT_KEYS = ("credited", "debited")
    _REDEMPTION_KEYS = ("minted", "completed", "expired", "invalid_proofs", "insufficient_points")

    def __init__(self) -> None:
        self._lock = Lock()
        self._visits: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)
        self._recent: Deque[Tuple[str, str, datetime]] = deque(maxlen=25)

    def record_visit_event(self, event: str) -> None:
        with self._lock:
            self._visits[event] += 1

    def record_points(self, direction: str, amount: int) -> None:
        with self._lock:
            self._points[direction] += amount

    def record_redemption_event(self, event: str) -> None:
        with self._lock:
            self._redemptions[event] += 1

    def record_failure(self, workflow: str, error: Exception) -> None:
        name = type(error).__name__
        with self._lock:
            self._failures[f"{workflow}:{name}"] += 1
            self._recent.appendleft((workflow, name, utcnow()))

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            visits = {key: self._visits.get(key, 0) for key in self._VISIT_KEYS}
            points = {key: self._points.get(key, 0) for key in self._POINT_KEYS}
            redemptions = {key: self._redemptions.get(key, 0) for key in self._REDEMPTION_KEYS}
            failures = dict(self._failures)
            recent = list(self._recent)
        return LedgerSnapshot(
            visits=visits,
            points=points,
            redemptions=redemptions,
            failures=failures,
            recent_failures=recent,
        )

    def reset(self) -> None:
        with self._lock:
            self._visits.clear()
            self._points.clear()
            self._redemptions.clear()
            self._failures.clear()
            self._recent.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_store() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["get_ledger_store", "LedgerObservabilityStore", "LedgerSnapshot"]
