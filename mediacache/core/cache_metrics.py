"""
Lightweight in-memory fill/serve counters for observability and tuning.
"""

from threading import Lock
from typing import Dict

OUTCOMES = (
    "passthrough",
    "hit",
    "miss",
    "coalesced",
    "not_found",
    "invalid",
    "error",
)

_metrics_lock = Lock()
_metrics: Dict[str, int] = {outcome: 0 for outcome in OUTCOMES}


def record_outcome(outcome: str) -> None:
    """Call once per served request with its terminal outcome."""
    if outcome not in _metrics:
        return
    with _metrics_lock:
        _metrics[outcome] += 1


def get_cache_metrics() -> Dict[str, int]:
    """Return a snapshot of current counters plus the derived hit ratio."""
    with _metrics_lock:
        snapshot = dict(_metrics)
    lookups = snapshot["hit"] + snapshot["miss"] + snapshot["coalesced"]
    snapshot["hit_ratio"] = round(snapshot["hit"] / lookups, 4) if lookups else 0.0
    return snapshot


def reset_cache_metrics() -> None:
    with _metrics_lock:
        for outcome in OUTCOMES:
            _metrics[outcome] = 0
