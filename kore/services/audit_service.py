"""Security event trail for operator review."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from kore.models.security import SecurityEvent

logger = logging.getLogger(__name__)

EVENT_REGISTERED = "user_registered"
EVENT_LOGIN = "login_succeeded"
EVENT_ACCOUNT_LOCKED = "account_locked"
EVENT_TOKEN_REUSE = "refresh_token_reuse"
EVENT_LOGOUT = "logout"
EVENT_USER_DELETED = "user_deleted"


class AuditService:
    """Persist immutable security events."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        event_type: str,
        user_id: Optional[int] = None,
        severity: str = "info",
        family_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            user_id=user_id,
            event_type=event_type,
            severity=severity,
            family_id=family_id,
            ip_address=ip_address,
            detail_json=json.dumps(metadata or {}, ensure_ascii=False, default=str),
        )
        db.add(event)
        db.commit()
        return event

    @staticmethod
    def recent_events(
        db: Session, *, user_id: Optional[int] = None, event_type: Optional[str] = None, limit: int = 50
    ) -> List[SecurityEvent]:
        query = db.query(SecurityEvent)
        if user_id is not None:
            query = query.filter(SecurityEvent.user_id == user_id)
        if event_type:
            query = query.filter(SecurityEvent.event_type == event_type)
        return query.order_by(SecurityEvent.id.desc()).limit(limit).all()


audit_service = AuditService()
