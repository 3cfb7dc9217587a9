# services/audit.py
import logging
from typing import Any, Dict, Optional

from sqlmodel import Session

from models.models import AuditLog, AuditLogType

logger = logging.getLogger(__name__)


def record_audit(
    session: Session,
    type: AuditLogType,
    business_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Append an audit entry to the session. The caller owns the commit."""
    entry = AuditLog(
        business_id=business_id,
        actor_user_id=actor_user_id,
        type=AuditLogType(type).value,
        event_metadata=metadata or {},
    )
    session.add(entry)
    logger.debug("📝 Audit %s business=%s actor=%s", entry.type, business_id, actor_user_id)
    return entry
