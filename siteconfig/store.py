from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Setting, utcnow

logger = logging.getLogger(__name__)


def encode_value(value: Any) -> tuple[str | None, str]:
    """Return ``(stored_value, value_type)`` for a setting value."""
    if value is None:
        return None, "text"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False), "json"
    return str(value), "text"


def get_all_settings(session: Session) -> dict[str, str | None]:
    rows = session.execute(select(Setting)).scalars().all()
    return {row.key: row.value for row in rows}


def get_setting(session: Session, key: str, default: str | None = None) -> str | None:
    row = session.get(Setting, key)
    if row is None:
        return default
    return row.value


def get_json_setting(session: Session, key: str, default: Any = None) -> Any:
    row = session.get(Setting, key)
    if row is None or not row.value:
        return default
    return decode_json(key, row.value, default)


def decode_json(key: str, raw: str | None, default: Any = None) -> Any:
    # Legacy rows may carry JSON in a text-tagged value; parse either way.
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.warning("Failed to parse JSON setting %s: %s", key, exc)
        return default


def update_settings(session: Session, updates: Mapping[str, Any]) -> list[str]:
    """Upsert all ``updates`` in a single transaction and return the touched keys."""
    touched: list[str] = []
    try:
        for key, value in updates.items():
            stored, value_type = encode_value(value)
            row = session.get(Setting, key)
            if row is None:
                row = Setting(key=key)
                session.add(row)
            row.value = stored
            row.value_type = value_type
            row.updated_at = utcnow()
            touched.append(key)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return touched
