"""
Notification Service

Stores notification intents as in-app notifications.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.db.models import Notification
from app.quotation.collaborators import Notifier
from app.quotation.errors import DependencyFailure
from app.quotation.intents import NotificationKind, NotificationTarget, NotifyIntent
from app.quotation.models import utcnow

logger = logging.getLogger(__name__)

TITLES: Dict[NotificationKind, str] = {
    NotificationKind.APPROVED: "Quotation Approved",
    NotificationKind.REJECTED: "Quotation Rejected",
    NotificationKind.REPLIED: "New Reply on Your Quotation",
    NotificationKind.CONVERTED: "Quotation Converted to Order",
    NotificationKind.CUSTOMER_APPROVED: "Customer Accepted Quotation",
    NotificationKind.CUSTOMER_REJECTED: "Customer Declined Quotation",
    NotificationKind.EXPIRED: "Quotation Expired",
}

ACTION_URLS: Dict[NotificationTarget, str] = {
    NotificationTarget.CUSTOMER: "/quotations",
    NotificationTarget.STAFF: "/staff/quotations",
}


# === Global accessor ===

_notification_service: Optional["NotificationService"] = None


def get_notification_service() -> "NotificationService":
    global _notification_service
    if _notification_service is None:
        from app.db.database import AsyncSessionLocal
        _notification_service = NotificationService(session_factory=AsyncSessionLocal)
    return _notification_service


def set_notification_service(service: Optional["NotificationService"]) -> None:
    global _notification_service
    _notification_service = service


class NotificationService(Notifier):
    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        return self._session_factory()

    async def notify(self, intent: NotifyIntent) -> None:
        try:
            async with self._session() as session:
                session.add(Notification(
                    id=f"NTF-{uuid4().hex[:12].upper()}",
                    target=intent.target.value,
                    recipient=intent.recipient,
                    kind=intent.kind.value,
                    title=TITLES.get(intent.kind, "Quotation Update"),
                    message=intent.message,
                    action_url=ACTION_URLS[intent.target],
                    quotation_id=intent.quotation_number,
                    payload={"quotation_number": intent.quotation_number, **intent.metadata},
                    created_at=utcnow(),
                ))
                await session.commit()
        except SQLAlchemyError as e:
            raise DependencyFailure("notification service", str(e)) from e

        logger.info(f"Notified {intent.target.value} about {intent.quotation_number}: {intent.kind.value}")

    async def list_notifications(
        self,
        target: Optional[str] = None,
        recipient: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        async with self._session() as session:
            stmt = select(Notification)
            if target:
                stmt = stmt.where(Notification.target == target)
            if recipient:
                stmt = stmt.where(Notification.recipient == recipient)
            stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
            rows = (await session.execute(stmt)).scalars().all()

        return [
            {
                "id": r.id,
                "target": r.target,
                "recipient": r.recipient,
                "kind": r.kind,
                "title": r.title,
                "message": r.message,
                "action_url": r.action_url,
                "quotation_number": r.quotation_id,
                "payload": r.payload or {},
                "is_read": r.is_read,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]
