"""Audit service for security-sensitive events."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.audit import AuditEvent

logger = logging.getLogger(__name__)


class AuditService:
    """Persist immutable audit trail entries."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        user_id: Optional[int],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Record an event in the caller's transaction (flushed, not committed)."""
        event = AuditEvent(
            user_id=user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            ip_address=ip_address,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
        )
        db.add(event)
        db.flush()
        return event

    @staticmethod
    def list_events(
        db: Session,
        *,
        action: Optional[str] = None,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        query = db.query(AuditEvent)
        if action:
            query = query.filter(AuditEvent.action == action)
        if user_id is not None:
            query = query.filter(AuditEvent.user_id == user_id)
        return query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()


audit_service = AuditService()
