from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import session as db_session
from db.models import AdminAudit

logger = logging.getLogger(__name__)

T = TypeVar("T")


def best_effort(label: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
    """Run a non-critical effect; failures are logged and never reach the caller."""
    try:
        return fn(*args, **kwargs)
    except Exception:
        logger.warning("%s failed", label, exc_info=True)
        return None


def _write_audit(action: str, meta: dict[str, Any] | None) -> None:
    session = db_session.SessionLocal()
    try:
        session.add(AdminAudit(action=action, meta_json=json.dumps(meta or {}, default=str)))
        session.commit()
    finally:
        session.close()


def log_admin_action(action: str, meta: dict[str, Any] | None = None) -> None:
    best_effort(f"audit {action}", _write_audit, action, meta)


def list_audit(session: Session, *, limit: int = 50) -> list[dict[str, Any]]:
    rows = session.execute(
        select(AdminAudit).order_by(AdminAudit.created_at.desc(), AdminAudit.id.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            "id": row.id,
            "action": row.action,
            "meta": json.loads(row.meta_json or "{}"),
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]
