"""Baseline series for spike detection.

The default source treats a rule's own recent violations as the time series:
the baseline is therefore built from past anomalies, not from every observed
value. Other sources can be plugged into the evaluator without touching it.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from datawatch.store import SqlStore


HISTORY_WINDOW = timedelta(days=7)
HISTORY_LIMIT = 100
MIN_HISTORY = 10


class SpikeHistorySource(Protocol):
    def load(self, rule: dict[str, Any]) -> list[float] | None:
        """Return the baseline values, or ``None`` when history is insufficient."""
        ...


def parse_numeric(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        number = float(raw)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


class ViolationHistorySource:
    def __init__(
        self,
        store: SqlStore,
        window: timedelta = HISTORY_WINDOW,
        limit: int = HISTORY_LIMIT,
        minimum: int = MIN_HISTORY,
    ) -> None:
        self._store = store
        self._window = window
        self._limit = limit
        self._minimum = minimum

    def load(self, rule: dict[str, Any]) -> list[float] | None:
        since = datetime.now(timezone.utc) - self._window
        violations = self._store.list_recent_violations(rule["id"], since=since, limit=self._limit)
        # The minimum counts loaded rows, before non-numeric values are dropped.
        if len(violations) < self._minimum:
            return None
        values = [parse_numeric(v["actual_value"]) for v in violations]
        return [v for v in values if v is not None]
