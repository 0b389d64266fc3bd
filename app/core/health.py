from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from app.core.settings import settings
from app.db.session import engine
from app.services.settlement_queue import SettlementQueue
from app.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"


async def _check_db() -> dict[str, str]:
    try:
        async with engine.begin() as conn:  # type: AsyncConnection
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_redis() -> dict[str, str]:
    try:
        await get_redis_client().ping()
        return {"status": "ok"}
    except Exception as exc:
        return {"status": "error", "error": str(exc)}


async def _settlement_queue_depths() -> dict[str, Any]:
    try:
        return {"status": "ok", **await SettlementQueue().depths()}
    except RedisError as exc:
        return {"status": "error", "error": str(exc)}


async def _run_checks() -> tuple[dict[str, dict[str, Any]], str, bool]:
    checks = {
        "api": {"status": "ok", "version": APP_VERSION},
        "database": await _check_db(),
        "redis": await _check_redis(),
    }
    ready = all(check.get("status") == "ok" for check in checks.values())
    return checks, ("ok" if ready else "degraded"), ready


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks, overall, ready = await _run_checks()
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _now(),
        "checks": checks,
    }


async def status_summary_payload(runtime: Any | None = None) -> dict[str, Any]:
    """Readiness plus the settlement runtime and queue backlog."""
    payload = await ready_payload()
    payload["version"] = APP_VERSION
    payload["settlement"] = runtime.status() if runtime is not None else {"enabled": False}
    payload["settlement_queue"] = await _settlement_queue_depths() if payload["ready"] else {"status": "skipped"}
    return payload


async def health_payload() -> dict[str, Any]:
    return await ready_payload()
