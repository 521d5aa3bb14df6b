from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.core.logging import get_audit_logger
from loanflow.models.audit_log import AuditLog

audit_logger = get_audit_logger()


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
        name = column.key
        if name in excluded:
            continue
        data[name] = getattr(model, name, None)
    return serialize_for_audit(data)


def _diff_values(old: Any, new: Any, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    if isinstance(old, dict) and isinstance(new, dict):
        keys = set(old.keys()) | set(new.keys())
        for key in sorted(keys, key=str):
            path = f"{prefix}.{key}" if prefix else str(key)
            changes.update(_diff_values(old.get(key), new.get(key), path))
        return changes
    if old != new:
        changes[prefix or "value"] = {"from": old, "to": new}
    return changes


def _build_summary(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    if not changes:
        return action
    keys = list(changes.keys())
    snippet = ", ".join(keys[:3])
    suffix = "..." if len(keys) > 3 else ""
    return f"{action}: {snippet}{suffix}"


def record_audit_log(
    db: AsyncSession,
    *,
    actor_id,
    action: str,
    resource_type: str,
    resource_id: Any = None,
    loan_id=None,
    details: dict[str, Any] | None = None,
    old_value: Any | None = None,
    new_value: Any | None = None,
    summary: str | None = None,
) -> AuditLog:
    """Stage an audit row on the session; the caller's commit persists it."""
    payload: dict[str, Any] = dict(serialize_for_audit(details) or {})
    changes = None
    if old_value is not None or new_value is not None:
        changes = _diff_values(serialize_for_audit(old_value) or {}, serialize_for_audit(new_value) or {})
        if changes:
            payload["changes"] = changes
    entry = AuditLog(
        actor_id=actor_id,
        loan_id=loan_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=payload or None,
        summary=summary or _build_summary(action, changes),
    )
    db.add(entry)
    audit_logger.info(
        "%s %s:%s by %s",
        action,
        resource_type,
        entry.resource_id or "-",
        actor_id or "-",
        extra={"action": action, "loan_id": loan_id},
    )
    return entry
