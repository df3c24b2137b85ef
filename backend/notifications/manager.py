"""Notification Manager — central dispatcher for all messaging channels.

Communication handlers send through here; the approval orchestrator and
task handlers use ``notify_users`` as a fire-and-forget notification sink
that also keeps a per-user in-app inbox.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from notifications.channels import (
    ChannelType,
    ChatChannel,
    DeliveryResult,
    EmailChannel,
    Message,
    MessagingChannel,
    PushChannel,
    SmsChannel,
    WhatsAppChannel,
)

logger = logging.getLogger(__name__)


@dataclass
class InAppNotification:
    """An entry in a user's in-app inbox."""
    user_id: str
    title: str
    message: str
    type: str = "INFO"
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    read: bool = False
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "data": self.data,
            "read": self.read,
            "createdAt": self.created_at,
        }


class NotificationManager:
    """Central messaging dispatcher.

    Manages channel registration and per-user inboxes.
    Singleton — use get_notification_manager().
    """

    def __init__(self):
        self._channels: dict[ChannelType, MessagingChannel] = {}
        self._inbox: dict[str, list[InAppNotification]] = {}
        self._initialized = False

    def register_channel(self, channel: MessagingChannel) -> None:
        """Register a messaging channel, replacing any channel for the same transport."""
        self._channels[channel.channel_type] = channel
        logger.info(f"Messaging channel registered: {channel.channel_type.value}")

    def configure_channels(self, config: dict) -> None:
        """Configure all channels from app settings.

        Args:
            config: Dict with channel configs (see Settings.channel_config):
                {
                    "email": {"smtp_host": ..., "smtp_port": ...},
                    "sms": {"api_url": ..., "api_key": ...},
                    "chat": {"webhook_url": ...},
                }
        """
        factories = {
            "email": EmailChannel,
            "sms": SmsChannel,
            "whatsapp": WhatsAppChannel,
            "chat": ChatChannel,
            "push": PushChannel,
        }
        for key, factory in factories.items():
            if key in config:
                self.register_channel(factory(config[key]))
        self._initialized = True

    def get_channel(self, channel_type: ChannelType) -> Optional[MessagingChannel]:
        return self._channels.get(channel_type)

    def is_available(self, channel_type: ChannelType) -> bool:
        channel = self._channels.get(channel_type)
        return channel is not None and channel.is_available()

    async def send(self, channel_type: ChannelType, target: str, message: Message) -> DeliveryResult:
        """Send a message through the channel registered for channel_type."""
        channel = self._channels.get(channel_type)
        if channel is None or not channel.is_available():
            return DeliveryResult(sent=False, reason=f"Channel not configured: {channel_type.value}")

        result = await channel.send(target, message)
        if result.sent:
            logger.info(f"Message sent via {channel_type.value} to {target}")
        else:
            logger.warning(f"Message not sent via {channel_type.value}: {result.reason}")
        return result

    # ─── Per-transport helpers ─────────────────────────────────

    async def send_email(self, to: str, subject: str, body: str, **kwargs) -> DeliveryResult:
        return await self.send(ChannelType.EMAIL, to, Message(body=body, subject=subject, **kwargs))

    async def send_sms(self, phone_number: str, text: str) -> DeliveryResult:
        return await self.send(ChannelType.SMS, phone_number, Message(body=text))

    async def send_whatsapp(
        self, phone_number: str, text: str = "", template: str = None, parameters: dict = None
    ) -> DeliveryResult:
        return await self.send(
            ChannelType.WHATSAPP,
            phone_number,
            Message(body=text, template=template, data=parameters or {}),
        )

    async def send_chat_message(self, channel: str, text: str, options: dict = None) -> DeliveryResult:
        return await self.send(ChannelType.CHAT, channel, Message(body=text, data=options or {}))

    async def send_push(self, user_id: str, title: str, body: str, data: dict = None) -> DeliveryResult:
        return await self.send(ChannelType.PUSH, user_id, Message(body=body, subject=title, data=data or {}))

    # ─── Notification sink ─────────────────────────────────────

    async def notify_users(
        self,
        user_ids: list[str],
        title: str,
        message: str,
        data: dict = None,
        type: str = "INFO",
    ) -> list[InAppNotification]:
        """Deliver a notification to each user's inbox and, when configured, as a push.

        Fire-and-forget: a failed push is logged and never raised.
        """
        created = []
        for user_id in user_ids or []:
            if not user_id:
                continue
            entry = InAppNotification(
                user_id=str(user_id), title=title, message=message, type=type, data=dict(data or {})
            )
            self._inbox.setdefault(entry.user_id, []).append(entry)
            created.append(entry)

            if self.is_available(ChannelType.PUSH):
                try:
                    await self.send_push(entry.user_id, title, message, entry.data)
                except Exception as e:
                    logger.error(f"Push delivery to {user_id} failed: {e}")

        logger.info(f"Notified {len(created)} user(s): {title}")
        return created

    def inbox(self, user_id: str, unread_only: bool = False) -> list[InAppNotification]:
        entries = self._inbox.get(str(user_id), [])
        return [e for e in entries if not (unread_only and e.read)]

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        for entry in self._inbox.get(str(user_id), []):
            if entry.id == notification_id:
                entry.read = True
                return True
        return False

    def get_status(self) -> dict:
        """Get notification manager status."""
        return {
            "initialized": self._initialized,
            "channels": {ch.value: c.is_available() for ch, c in self._channels.items()},
            "inboxes": len(self._inbox),
        }


# ─── Singleton ─────────────────────────────────────────────────

_manager: Optional[NotificationManager] = None


def get_notification_manager() -> NotificationManager:
    """Get or create the singleton NotificationManager."""
    global _manager
    if _manager is None:
        from app.config import get_settings

        _manager = NotificationManager()
        _manager.configure_channels(get_settings().channel_config())
    return _manager
