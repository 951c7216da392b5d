"""
Notifications

In-app notifications for customers and staff.
"""

from app.notifications.service import NotificationService, get_notification_service, set_notification_service

__all__ = ["NotificationService", "get_notification_service", "set_notification_service"]
