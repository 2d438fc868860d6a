#!/usr/bin/env python3
"""
Health check endpoints and system monitoring
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import psutil

from services.api.logging_config import get_logger
from services.claims.errors import NoteStoreError

logger = get_logger("health")

# Track API startup time
API_START_TIME = time.time()

# Any well-formed hash works for a reachability probe
_PROBE_HASH = "11111111111111111111111111111111"


async def check_rpc_health(rpc_url: str, client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    """
    Check Solana RPC connectivity with a getHealth call

    Returns:
        dict with status, response_time_ms, and error (if any)
    """
    start = time.time()
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=5.0) as c:
                response = await c.post(rpc_url, json={"jsonrpc": "2.0", "id": 1, "method": "getHealth"})
        else:
            response = await client.post(rpc_url, json={"jsonrpc": "2.0", "id": 1, "method": "getHealth"})
        response.raise_for_status()
        body = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"RPC health check failed: {e}")
        return {"status": "unhealthy", "error": str(e), "rpc_url": rpc_url}

    if isinstance(body, dict) and body.get("error"):
        # node reachable but behind / unhealthy
        err = body["error"]
        msg = err.get("message", err) if isinstance(err, dict) else err
        return {"status": "unhealthy", "error": str(msg), "rpc_url": rpc_url}

    return {
        "status": "healthy",
        "response_time_ms": round((time.time() - start) * 1000, 2),
        "rpc_url": rpc_url,
    }


async def check_note_store_health(note_store) -> Dict[str, Any]:
    """
    Check the note store answers queries

    Returns:
        dict with status, response_time_ms, and error (if any)
    """
    start = time.time()
    try:
        await note_store.get_claimable_count(_PROBE_HASH)
    except NoteStoreError as e:
        logger.error(f"Note store health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "response_time_ms": round((time.time() - start) * 1000, 2)}


def get_system_metrics() -> Dict[str, Any]:
    """CPU, memory and disk usage of the host"""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage("/")
    return {
        "cpu": {"usage_percent": round(psutil.cpu_percent(interval=None), 2)},
        "memory": {
            "usage_percent": round(memory.percent, 2),
            "used_mb": round(memory.used / (1024 * 1024), 2),
        },
        "disk": {
            "usage_percent": round(disk.percent, 2),
            "free_gb": round(disk.free / (1024 * 1024 * 1024), 2),
        },
    }


def get_uptime() -> Dict[str, Any]:
    """
    Get API uptime

    Returns:
        dict with uptime_seconds and uptime_formatted
    """
    uptime_seconds = time.time() - API_START_TIME
    uptime_minutes = uptime_seconds / 60
    uptime_hours = uptime_minutes / 60
    uptime_days = uptime_hours / 24

    if uptime_days >= 1:
        uptime_str = f"{int(uptime_days)}d {int(uptime_hours % 24)}h"
    elif uptime_hours >= 1:
        uptime_str = f"{int(uptime_hours)}h {int(uptime_minutes % 60)}m"
    else:
        uptime_str = f"{int(uptime_minutes)}m {int(uptime_seconds % 60)}s"

    return {"uptime_seconds": round(uptime_seconds, 2), "uptime_formatted": uptime_str}


async def comprehensive_health_check(
    rpc_url: Optional[str] = None,
    note_store=None,
    rpc_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Check the ledger RPC and the note store, plus host metrics and uptime.
    Overall status is healthy when every configured component is.
    """
    checks: Dict[str, Any] = {}
    checks["rpc"] = await check_rpc_health(rpc_url, rpc_client) if rpc_url else {"status": "not_configured"}
    checks["note_store"] = (
        await check_note_store_health(note_store) if note_store is not None else {"status": "not_configured"}
    )
    checks["system"] = get_system_metrics()
    checks["uptime"] = get_uptime()

    statuses = [checks["rpc"].get("status"), checks["note_store"].get("status")]
    overall = "healthy" if all(s in ("healthy", "not_configured") for s in statuses) else "unhealthy"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "checks": checks,
    }
