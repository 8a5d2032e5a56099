# Overview: Service-layer operations for the general audit log; best-effort, never blocks business operations.

"""
Audit Recorder

Audit rows are written AFTER the business transaction has committed, in a
separate commit. A failing audit write is rolled back and logged; it never
turns a successful operation into a failed one.

Services describe what happened with an AuditEntry and return it next to
their result. The route emits it once the response data is settled:

    outcome, entry = allocation_service.claim(customer_id, g.current_user)
    audit_service.emit(entry, request)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditLog
from crm.time_utils import utcnow


@dataclass(frozen=True)
class AuditEntry:
    actor_id: int | None
    action: str
    entity: str
    entity_id: Any = None
    changes: dict | None = field(default=None)


def client_ip(req) -> str | None:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = req.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:45]
    return req.remote_addr


def record(
    actor_id: int | None,
    action: str,
    entity: str,
    entity_id: Any = None,
    changes: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """
    Write one audit row in its own commit.

    Returns False (after rolling back and logging) when the write fails.
    Must not be called with uncommitted business changes pending in the session.
    """
    try:
        db.session.add(AuditLog(
            user_id=actor_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            changes=changes,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            created_at=utcnow(),
        ))
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.warning(
            "Audit write failed: %s %s %s", action, entity, entity_id, exc_info=True,
        )
        return False


def emit(entry: AuditEntry | None, req=None) -> bool:
    """Fire-and-log an AuditEntry produced by a service call."""
    if entry is None:
        return False
    ip_address = client_ip(req) if req is not None else None
    user_agent = req.headers.get("User-Agent") if req is not None else None
    return record(
        entry.actor_id,
        entry.action,
        entry.entity,
        entry.entity_id,
        entry.changes,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def list_audit_logs(*, entity: str | None = None, action: str | None = None,
                    page: int = 1, limit: int = 50) -> tuple[list[AuditLog], int]:
    query = db.session.query(AuditLog)
    if entity:
        query = query.filter(AuditLog.entity == entity)
    if action:
        query = query.filter(AuditLog.action == action)
    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
