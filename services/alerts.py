# services/alerts.py
import logging
from typing import Any, Dict, Optional

from sqlmodel import Session, select

from models.models import AlertSeverity, AlertType, BusinessAlert, utc_now

logger = logging.getLogger(__name__)


def find_open_alert(
    session: Session,
    business_id: int,
    type: AlertType,
    subject_id: Optional[int] = None,
) -> Optional[BusinessAlert]:
    query = select(BusinessAlert).where(
        BusinessAlert.business_id == business_id,
        BusinessAlert.type == AlertType(type).value,
        BusinessAlert.resolved == False,  # noqa: E712
    )
    if subject_id is not None:
        query = query.where(BusinessAlert.subject_id == subject_id)
    return session.exec(query).first()


def raise_alert(
    session: Session,
    business_id: int,
    type: AlertType,
    severity: AlertSeverity,
    title: str,
    message: str,
    subject_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> BusinessAlert:
    """Open an alert, or refresh the open one for the same subject."""
    alert = find_open_alert(session, business_id, type, subject_id)
    if alert is None:
        alert = BusinessAlert(business_id=business_id, type=AlertType(type).value, subject_id=subject_id)
    alert.severity = AlertSeverity(severity).value
    alert.title = title
    alert.message = message
    alert.alert_metadata = metadata or {}
    session.add(alert)
    logger.info("🚨 Alert %s (%s) for business %s", alert.type, alert.severity, business_id)
    return alert


def resolve_alerts(
    session: Session,
    business_id: int,
    type: AlertType,
    subject_id: Optional[int] = None,
) -> int:
    query = select(BusinessAlert).where(
        BusinessAlert.business_id == business_id,
        BusinessAlert.type == AlertType(type).value,
        BusinessAlert.resolved == False,  # noqa: E712
    )
    if subject_id is not None:
        query = query.where(BusinessAlert.subject_id == subject_id)

    resolved = 0
    for alert in session.exec(query).all():
        alert.resolved = True
        alert.resolved_at = utc_now()
        session.add(alert)
        resolved += 1
    return resolved
