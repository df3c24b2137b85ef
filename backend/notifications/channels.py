"""Messaging channel implementations.

Each channel handles delivery for one transport (email, SMS, WhatsApp,
chat, push). Handlers never talk to a provider directly: they ask the
NotificationManager, which dispatches to the channel registered for the
transport. A channel with no provider configured reports
``is_available() == False`` and handlers degrade to ``sent: false``.
"""

import asyncio
import re
import smtplib
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s\-()]{6,19}$")


def is_valid_email(address: Optional[str]) -> bool:
    return bool(address) and EMAIL_PATTERN.match(address.strip()) is not None


def is_valid_phone(number: Optional[str]) -> bool:
    return bool(number) and PHONE_PATTERN.match(number.strip()) is not None


# ─── Data Types ────────────────────────────────────────────────

class ChannelType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    CHAT = "chat"
    PUSH = "push"


@dataclass
class Message:
    """Content handed to a channel. Transports ignore fields they do not use."""
    body: str = ""
    subject: str = ""
    is_html: bool = False
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    template: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    sent: bool
    message_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"sent": self.sent, "messageId": self.message_id, "reason": self.reason}


# ─── Base Channel ──────────────────────────────────────────────

class MessagingChannel(ABC):
    """Abstract base for messaging channels."""

    channel_type: ChannelType

    def __init__(self, config: dict = None):
        self.config = config or {}

    @abstractmethod
    def is_available(self) -> bool:
        """Whether a provider is configured for this transport."""

    @abstractmethod
    async def send(self, target: str, message: Message) -> DeliveryResult:
        """Deliver message to target (address, phone number, channel name, user id)."""


class HttpProviderChannel(MessagingChannel):
    """Channel backed by a JSON-over-HTTP provider API.

    Config:
        api_url, api_key
    """

    def __init__(self, config: dict = None, transport: httpx.AsyncBaseTransport = None):
        super().__init__(config)
        self._transport = transport

    def is_available(self) -> bool:
        return bool(self.config.get("api_url"))

    def build_payload(self, target: str, message: Message) -> dict:
        return {"to": target, "message": message.body}

    async def send(self, target: str, message: Message) -> DeliveryResult:
        if not self.is_available():
            return DeliveryResult(sent=False, reason=f"{self.channel_type.value} provider not configured")

        headers = {}
        if self.config.get("api_key"):
            headers["Authorization"] = f"Bearer {self.config['api_key']}"

        try:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                response = await client.post(
                    self.config["api_url"],
                    json=self.build_payload(target, message),
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.error("Provider request failed", channel=self.channel_type.value, error=str(e))
            return DeliveryResult(sent=False, reason=str(e))

        if response.status_code >= 400:
            logger.warning(
                "Provider rejected message",
                channel=self.channel_type.value,
                status=response.status_code,
            )
            return DeliveryResult(sent=False, reason=f"HTTP {response.status_code}")

        message_id = None
        try:
            body = response.json()
            if isinstance(body, dict):
                message_id = body.get("id") or body.get("messageId") or body.get("sid")
        except ValueError:
            pass
        return DeliveryResult(sent=True, message_id=message_id or str(uuid.uuid4()))


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(MessagingChannel):
    """Send email via SMTP.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    channel_type = ChannelType.EMAIL

    def is_available(self) -> bool:
        return bool(self.config.get("smtp_host"))

    async def send(self, target: str, message: Message) -> DeliveryResult:
        if not self.is_available():
            return DeliveryResult(sent=False, reason="Email service not configured")

        from_addr = self.config.get("from_address", "workflows@localhost")
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = from_addr
        msg["To"] = target
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        message_id = f"<{uuid.uuid4()}@{self.config.get('smtp_host')}>"
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(message.body, "html" if message.is_html else "plain"))

        recipients = [target] + list(message.cc) + list(message.bcc)
        loop = asyncio.get_running_loop()
        try:
            # smtplib blocks, so it runs in the default executor
            await loop.run_in_executor(None, self._send_smtp, from_addr, recipients, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email send failed", to=target, error=str(e))
            return DeliveryResult(sent=False, reason=str(e))

        return DeliveryResult(sent=True, message_id=message_id)

    def _send_smtp(self, from_addr: str, recipients: list[str], msg: MIMEMultipart) -> None:
        """Synchronous SMTP send."""
        with smtplib.SMTP(self.config["smtp_host"], self.config.get("smtp_port", 587)) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            user, password = self.config.get("smtp_user"), self.config.get("smtp_password")
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, recipients, msg.as_string())


# ─── SMS / WhatsApp ────────────────────────────────────────────

class SmsChannel(HttpProviderChannel):
    channel_type = ChannelType.SMS


class WhatsAppChannel(HttpProviderChannel):
    """WhatsApp messages; template sends pass ``template`` + ``data`` as parameters."""

    channel_type = ChannelType.WHATSAPP

    def build_payload(self, target: str, message: Message) -> dict:
        if message.template:
            return {"to": target, "template": message.template, "parameters": message.data}
        return {"to": target, "message": message.body}


# ─── Chat Channel ──────────────────────────────────────────────

class ChatChannel(HttpProviderChannel):
    """Post to a Slack-compatible incoming webhook.

    Config:
        webhook_url
    """

    channel_type = ChannelType.CHAT

    def __init__(self, config: dict = None, transport: httpx.AsyncBaseTransport = None):
        config = dict(config or {})
        config.setdefault("api_url", config.get("webhook_url", ""))
        super().__init__(config, transport)

    def build_payload(self, target: str, message: Message) -> dict:
        payload = {"text": message.body}
        if target:
            payload["channel"] = target
        payload.update(message.data)
        return payload


# ─── Push Channel ──────────────────────────────────────────────

class PushChannel(HttpProviderChannel):
    channel_type = ChannelType.PUSH

    def build_payload(self, target: str, message: Message) -> dict:
        return {
            "user": target,
            "title": message.subject,
            "body": message.body,
            "data": message.data,
        }
