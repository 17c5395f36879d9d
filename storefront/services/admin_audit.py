from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session

from storefront.models.admin_audit_log import AdminAuditLog

logger = logging.getLogger(__name__)

# user_id used for entries without an authenticated admin (failed logins, sweeps)
SYSTEM_USER_ID = 0


def log_admin_action(
    db: Session,
    *,
    user_id: int | None,
    action: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
    meta: Mapping[str, Any] | None = None,
) -> AdminAuditLog:
    """Stage an audit row in the caller's transaction; the caller commits."""
    entry = AdminAuditLog(
        user_id=user_id if user_id is not None else SYSTEM_USER_ID,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_json=json.dumps(dict(meta), default=str, sort_keys=True) if meta else None,
    )
    db.add(entry)
    logger.info("audit action=%s entity=%s:%s user_id=%s", action, entity_type, entity_id, entry.user_id)
    return entry


def audit_meta(entry: AdminAuditLog) -> dict[str, Any]:
    if not entry.meta_json:
        return {}
    try:
        meta = json.loads(entry.meta_json)
    except ValueError:
        logger.warning("audit entry id=%s has unreadable meta_json", entry.id)
        return {}
    return meta if isinstance(meta, dict) else {"value": meta}


def list_admin_actions(
    db: Session,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[AdminAuditLog]:
    query = db.query(AdminAuditLog)
    if entity_type:
        query = query.filter(AdminAuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AdminAuditLog.entity_id == entity_id)
    return query.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc()).limit(limit).all()
