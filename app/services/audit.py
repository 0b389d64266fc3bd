from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_audit_logger
from app.models.audit_log import AuditLog


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            UUID: lambda v: str(v),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for column in model.__table__.columns:
        name = column.name
        if name in excluded:
            continue
        value = getattr(model, name)
        # Token amounts can exceed JSON's safe integer range.
        data[name] = str(value) if isinstance(value, int) and not isinstance(value, bool) else value
    return serialize_for_audit(data)


def _diff_snapshots(old: dict[str, Any], new: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        key: {"from": old.get(key), "to": new.get(key)}
        for key in sorted(set(old) | set(new))
        if old.get(key) != new.get(key)
    }


def _build_summary(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    """``loan.defaulted: status Active->Defaulted (+2 fields)``."""
    if not changes:
        return action
    others = [key for key in changes if key != "status"]
    parts = []
    if "status" in changes:
        parts.append(f"status {changes['status']['from']}->{changes['status']['to']}")
    if others and parts:
        parts.append(f"(+{len(others)} fields)")
    elif others:
        parts.append(", ".join(others[:3]) + ("..." if len(others) > 3 else ""))
    return f"{action}: {' '.join(parts)}"


def record_audit_log(
    db: AsyncSession,
    *,
    actor_id,
    action: str,
    resource_type: str,
    resource_id: str,
    old_value: Any | None = None,
    new_value: Any | None = None,
) -> AuditLog:
    serialized_old = serialize_for_audit(old_value) if old_value is not None else None
    serialized_new = serialize_for_audit(new_value) if new_value is not None else None
    changes = None
    if serialized_old is not None or serialized_new is not None:
        changes = _diff_snapshots(serialized_old or {}, serialized_new or {}) or None
    summary = _build_summary(action, changes)
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_value=serialized_old,
        new_value=serialized_new,
        changes=changes,
        summary=summary,
    )
    db.add(entry)
    get_audit_logger().info(
        "%s resource=%s:%s actor=%s", summary, resource_type, resource_id, actor_id or "system"
    )
    return entry
