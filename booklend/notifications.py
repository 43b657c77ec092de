import logging
from datetime import datetime

from .domain import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Records notifications durably, then pushes them to live sessions."""

    def __init__(self, gateway, registry, clock=datetime.now, limit=50):
        self.gateway = gateway
        self.registry = registry
        self.clock = clock
        self.limit = limit

    def notify(self, recipient_id, type, message, related_data=None, dedup_key=None, created_at=None):
        notification = self.gateway.add_notification(Notification(
            recipient_id=recipient_id,
            type=NotificationType(type),
            message=message,
            related_data=dict(related_data or {}),
            created_at=created_at or self.clock(),
            dedup_key=dedup_key,
        ))
        logger.debug(f"Notification {notification.id} ({notification.type.value}) stored for user_id={recipient_id}")
        if not self.registry.is_online(recipient_id):
            logger.debug(f"User {recipient_id} offline, notification {notification.id} left unread")
            return notification
        try:
            self.registry.push(recipient_id, 'notification', notification.to_dict())
        except Exception as e:
            logger.warning(f"Real-time delivery of notification {notification.id} failed: {str(e)}")
        return notification

    def broadcast(self, event, payload, exclude_user=None):
        try:
            self.registry.broadcast(event, payload, exclude_user=exclude_user)
        except Exception as e:
            logger.warning(f"Broadcast of {event} failed: {str(e)}")

    def list_notifications(self, user_id):
        return self.gateway.list_notifications(user_id, limit=self.limit)

    def mark_read(self, user_id, notification_id):
        if self.gateway.mark_notification_read(user_id, notification_id):
            logger.debug(f"Notification {notification_id} marked read by user_id={user_id}")
