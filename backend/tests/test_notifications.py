"""Tests for the notification manager and provider channels."""

import json

import httpx
import pytest

from app.config import Settings
from helpers import HttpRecorder, RecordingChannel
from notifications.channels import (
    ChannelType,
    ChatChannel,
    EmailChannel,
    Message,
    PushChannel,
    SmsChannel,
    WhatsAppChannel,
    is_valid_email,
    is_valid_phone,
)
from notifications.manager import NotificationManager


@pytest.fixture
def provider():
    return HttpRecorder()


@pytest.mark.unit
class TestValidation:

    def test_email(self):
        assert is_valid_email("ann@example.com")
        assert not is_valid_email("ann@example")
        assert not is_valid_email(None)

    def test_phone(self):
        assert is_valid_phone("+359 888 123 456")
        assert not is_valid_phone("12")


@pytest.mark.unit
class TestManager:

    async def test_unregistered_channel(self):
        result = await NotificationManager().send_sms("+359888123456", "hi")

        assert result.sent is False
        assert result.reason == "Channel not configured: sms"

    async def test_configure_from_settings(self):
        manager = NotificationManager()
        manager.configure_channels(Settings(ENVIRONMENT="testing", SMTP_HOST="smtp.example.com").channel_config())

        assert manager.is_available(ChannelType.EMAIL)
        assert not manager.is_available(ChannelType.SMS)
        assert manager.get_status()["initialized"] is True

    async def test_register_replaces_channel(self):
        manager = NotificationManager()
        first, second = RecordingChannel(ChannelType.EMAIL), RecordingChannel(ChannelType.EMAIL)
        manager.register_channel(first)
        manager.register_channel(second)

        await manager.send_email("a@b.co", "s", "b")

        assert first.sent == []
        assert second.sent[0][1].subject == "s"

    async def test_notify_users_fills_inboxes_and_pushes(self):
        manager = NotificationManager()
        push = RecordingChannel(ChannelType.PUSH)
        manager.register_channel(push)

        created = await manager.notify_users(["u1", "", "u2"], "Title", "Body", {"k": 1})

        assert [n.user_id for n in created] == ["u1", "u2"]
        assert [target for target, _ in push.sent] == ["u1", "u2"]
        assert manager.inbox("u1")[0].data == {"k": 1}

    async def test_mark_read(self):
        manager = NotificationManager()
        [entry] = await manager.notify_users(["u1"], "t", "m")

        assert manager.mark_read("u1", entry.id)
        assert manager.inbox("u1", unread_only=True) == []
        assert not manager.mark_read("u1", "missing")


@pytest.mark.unit
class TestProviderChannels:

    async def test_sms_posts_to_provider(self, provider):
        provider.responses["https://sms.example.com/send"] = httpx.Response(200, json={"sid": "SM1"})
        channel = SmsChannel({"api_url": "https://sms.example.com/send", "api_key": "k"},
                             transport=httpx.MockTransport(provider))

        result = await channel.send("+359888123456", Message(body="hi"))

        assert result.message_id == "SM1"
        request = provider.requests[0]
        assert request.headers["Authorization"] == "Bearer k"
        assert json.loads(request.content) == {"to": "+359888123456", "message": "hi"}

    async def test_provider_error(self, provider):
        provider.responses["https://sms.example.com/send"] = httpx.Response(429)
        channel = SmsChannel({"api_url": "https://sms.example.com/send"}, transport=httpx.MockTransport(provider))

        result = await channel.send("+359888123456", Message(body="hi"))

        assert result.sent is False
        assert result.reason == "HTTP 429"

    async def test_whatsapp_template_payload(self):
        channel = WhatsAppChannel({"api_url": "https://wa.example.com"})
        payload = channel.build_payload("+1555000111", Message(template="welcome", data={"name": "Ann"}))
        assert payload == {"to": "+1555000111", "template": "welcome", "parameters": {"name": "Ann"}}

    async def test_chat_uses_webhook_url(self, provider):
        channel = ChatChannel({"webhook_url": "https://hooks.slack.example/T1"}, transport=httpx.MockTransport(provider))

        await channel.send("#sales", Message(body="New deal", data={"platform": "SLACK"}))

        assert json.loads(provider.requests[0].content) == {"text": "New deal", "channel": "#sales", "platform": "SLACK"}

    def test_push_payload(self):
        payload = PushChannel({}).build_payload("u1", Message(subject="T", body="B"))
        assert payload == {"user": "u1", "title": "T", "body": "B", "data": {}}

    async def test_email_without_host(self):
        result = await EmailChannel({}).send("a@b.co", Message(body="x"))
        assert result.reason == "Email service not configured"
