"""
Operator endpoints: store reachability, fill counters and recent logs.

Mounted under /_ops so they shadow no realistic asset path.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.cache_metrics import OUTCOMES, get_cache_metrics
from ..core.log_buffer import clear_log_entries, get_log_entries
from ..services.fill import FillOrchestrator
from ..storage.base import BlobStore
from .dependencies import get_orchestrator

router = APIRouter(prefix="/_ops", tags=["ops"])

# Probe key that is never a real object; a clean "False" proves reachability
PROBE_KEY = "_ops/probe"
STATUS_TTL_SECONDS = 60

store_status_cache: Dict[str, Dict[str, Any]] = {
    "origin": {"last_checked": None, "is_online": None, "last_error": None},
    "cache": {"last_checked": None, "is_online": None, "last_error": None},
}


def _is_recent(last_checked, max_age_seconds: int = STATUS_TTL_SECONDS) -> bool:
    if not last_checked:
        return False
    return (datetime.now(timezone.utc) - last_checked).total_seconds() < max_age_seconds


async def check_store(role: str, store: BlobStore, timeout: float) -> bool:
    """Bounded exists() probe, memoized for STATUS_TTL_SECONDS."""
    entry = store_status_cache[role]
    if _is_recent(entry["last_checked"]) and entry["is_online"] is not None:
        return bool(entry["is_online"])
    try:
        await asyncio.wait_for(store.exists(PROBE_KEY), timeout=timeout)
        entry["is_online"] = True
        entry["last_error"] = None
    except asyncio.TimeoutError:
        entry["is_online"] = False
        entry["last_error"] = "timeout"
    except Exception as e:
        entry["is_online"] = False
        entry["last_error"] = str(e) or type(e).__name__
    finally:
        entry["last_checked"] = datetime.now(timezone.utc)
    return bool(entry["is_online"])


def _describe(role: str, ok: bool, store: BlobStore) -> dict:
    entry = store_status_cache[role]
    return {
        "status": "online" if ok else "offline",
        "backend": store.describe(),
        "last_checked": entry["last_checked"].isoformat() if entry["last_checked"] else None,
        "last_error": entry["last_error"],
    }


@router.get("/health")
async def detailed_health(
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Store reachability for both backends."""
    origin_ok, cache_ok = await asyncio.gather(
        check_store("origin", orchestrator.origin, orchestrator.store_timeout),
        check_store("cache", orchestrator.cache, orchestrator.store_timeout),
    )
    system_status = "online"
    if not (origin_ok and cache_ok):
        system_status = "degraded" if (origin_ok or cache_ok) else "offline"
    return {
        "status": system_status,
        "stores": {
            "origin": _describe("origin", origin_ok, orchestrator.origin),
            "cache": _describe("cache", cache_ok, orchestrator.cache),
        },
    }


@router.get("/metrics")
async def metrics() -> Dict[str, Any]:
    return get_cache_metrics()


@router.get("/logs")
async def get_logs(
    since_id: Optional[int] = Query(None, ge=0),
    limit: int = Query(200, ge=1, le=2000),
    scope: str = Query("all", pattern="^(all|fill|errors)$"),
    outcome: Optional[str] = Query(None),
    asset: Optional[str] = Query(None),
) -> Dict[str, Any]:
    if outcome is not None and outcome not in OUTCOMES:
        raise HTTPException(status_code=400, detail=f"outcome must be one of {', '.join(OUTCOMES)}")
    items, last_id = get_log_entries(since_id, limit, scope, outcome=outcome, asset=asset)
    return {"items": items, "last_id": last_id}


@router.post("/logs/clear")
async def clear_logs() -> Dict[str, Any]:
    clear_log_entries()
    return {"cleared": True}
