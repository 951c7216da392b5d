"""
Notification API Endpoints
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException

from app.notifications.service import get_notification_service
from app.quotation.intents import NotificationTarget

router = APIRouter()


@router.get("", response_model=List[Dict[str, Any]])
async def list_notifications(
    target: Optional[str] = None,
    recipient: Optional[str] = None,
    limit: int = 50,
):
    """List stored notifications, newest first."""
    if target:
        try:
            NotificationTarget(target)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid target: {target}")
    service = get_notification_service()
    return await service.list_notifications(target=target, recipient=recipient, limit=limit)
