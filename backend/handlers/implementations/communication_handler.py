"""Communication nodes: email, SMS, WhatsApp, in-app/push notifications and chat.

Messages go out through the NotificationManager. A channel that is not
configured is not an error: the node succeeds with ``<x>Sent: False`` and a
reason, so a missing SMS provider does not fail an onboarding workflow.
Malformed recipients are errors.
"""

from typing import Any

import structlog

from handlers.base_handler import NodeHandler
from notifications.channels import ChannelType, is_valid_email, is_valid_phone
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)


def _recipients(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


class CommunicationHandler(NodeHandler):
    """Sends messages through the configured channels."""

    node_type = "communication"
    display_name = "Communication"

    def operations(self):
        return {
            "send_email": self._send_email,
            "send_template_email": self._send_template_email,
            "send_bulk_email": self._send_bulk_email,
            "send_sms": self._send_sms,
            "send_whatsapp": self._send_whatsapp,
            "send_notification": self._send_notification,
            "internal_notification": self._send_notification,
            "push_notification": self._push_notification,
            "post_to_chat": self._post_to_chat,
            "slack_message": self._post_to_chat,
        }

    @property
    def notifications(self):
        return self.services.notifications

    # ─── Email ───

    async def _deliver_email(self, to: list[str], subject: str, body: str, node: Node, context: ExecutionContext):
        """Send one message per recipient; returns (message ids, failures)."""
        config = node.config
        cc = _recipients(self.resolve_value(config.get("cc"), context))
        bcc = _recipients(self.resolve_value(config.get("bcc"), context))
        is_html = bool(config.get("isHtml", False))

        message_ids, failures = [], []
        for address in to:
            result = await self.notifications.send_email(address, subject, body, is_html=is_html, cc=cc, bcc=bcc)
            if result.sent:
                message_ids.append(result.message_id)
            else:
                failures.append({"to": address, "reason": result.reason})
        return message_ids, failures

    async def _send_email(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        to = _recipients(self.resolve_value(config.get("to"), context))
        for address in to:
            if not is_valid_email(address):
                return ExecutionResult.failed(f"Invalid email address: {address}")
        if not to:
            return ExecutionResult.failed("Email requires at least one recipient")

        if not self.notifications.is_available(ChannelType.EMAIL):
            logger.warning("Email service not configured", to=to)
            return ExecutionResult.ok({"emailSent": False, "reason": "Email service not configured", "to": to})

        subject = self.resolve(config.get("subject"), context)
        body = self.resolve(config.get("body"), context)
        message_ids, failures = await self._deliver_email(to, subject, body, node, context)
        if failures and not message_ids:
            return ExecutionResult.failed(f"Email delivery failed: {failures[0]['reason']}")

        return ExecutionResult.ok(
            {
                "emailSent": True,
                "to": to,
                "subject": subject,
                "isHtml": bool(config.get("isHtml", False)),
                "messageIds": message_ids,
                "failed": failures,
            }
        )

    async def _send_template_email(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        to = _recipients(self.resolve_value(config.get("to"), context))
        for address in to:
            if not is_valid_email(address):
                return ExecutionResult.failed(f"Invalid email address: {address}")

        template_id = config.get("templateId") or config.get("template")
        variables = self.resolve_map(config.get("variables"), context)
        if not self.notifications.is_available(ChannelType.EMAIL):
            return ExecutionResult.ok({"emailSent": False, "reason": "Email service not configured", "to": to})

        # Plain-text fallback listing the template variables
        subject = self.resolve(config.get("subject") or f"[{template_id}]", context)
        body = "\n".join(f"{k}: {v}" for k, v in variables.items())
        message_ids, failures = await self._deliver_email(to, subject, body, node, context)
        return ExecutionResult.ok(
            {
                "emailSent": bool(message_ids),
                "to": to,
                "templateId": template_id,
                "variablesUsed": sorted(variables),
                "failed": failures,
            }
        )

    async def _send_bulk_email(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        recipients = _recipients(self.resolve_value(config.get("recipients"), context))
        if not self.notifications.is_available(ChannelType.EMAIL):
            return ExecutionResult.ok(
                {"emailSent": False, "reason": "Email service not configured", "emailsSent": 0}
            )

        valid = [r for r in recipients if is_valid_email(r)]
        subject = self.resolve(config.get("subject"), context)
        body = self.resolve(config.get("body"), context)
        message_ids, failures = await self._deliver_email(valid, subject, body, node, context)

        logger.info("Bulk email sent", sent=len(message_ids), skipped=len(recipients) - len(valid))
        return ExecutionResult.ok(
            {
                "emailSent": bool(message_ids),
                "emailsSent": len(message_ids),
                "invalidRecipients": [r for r in recipients if r not in valid],
                "failed": failures,
            }
        )

    # ─── SMS / WhatsApp ───

    async def _send_sms(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        phone = self.resolve(node.config.get("phoneNumber"), context).strip()
        if not is_valid_phone(phone):
            return ExecutionResult.failed(f"Invalid phone number format: {phone}")
        if not self.notifications.is_available(ChannelType.SMS):
            return ExecutionResult.ok({"smsSent": False, "reason": "SMS service not configured", "phoneNumber": phone})

        text = self.resolve(node.config.get("message"), context)
        result = await self.notifications.send_sms(phone, text)
        return ExecutionResult.ok(
            {
                "smsSent": result.sent,
                "phoneNumber": phone,
                "messageId": result.message_id,
                "smsResult": result.to_dict(),
                "smsMessageId": result.message_id,
            }
        )

    async def _send_whatsapp(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        phone = self.resolve(config.get("phoneNumber"), context).strip()
        if not is_valid_phone(phone):
            return ExecutionResult.failed(f"Invalid phone number format: {phone}")
        if not self.notifications.is_available(ChannelType.WHATSAPP):
            return ExecutionResult.ok(
                {"whatsappSent": False, "reason": "WhatsApp service not configured", "phoneNumber": phone}
            )

        result = await self.notifications.send_whatsapp(
            phone,
            self.resolve(config.get("message"), context),
            template=config.get("templateName") or config.get("templateId"),
            parameters=self.resolve_map(config.get("parameters"), context),
        )
        return ExecutionResult.ok(
            {
                "whatsappSent": result.sent,
                "phoneNumber": phone,
                "whatsappMessageId": result.message_id,
                "reason": result.reason,
            }
        )

    # ─── Notifications ───

    def _user_ids(self, node: Node, context: ExecutionContext) -> list[str]:
        ids = self.resolve_value(node.config.get("userIds"), context)
        users = _recipients(ids)
        single = self.resolve(node.config.get("userId"), context) if node.config.get("userId") else ""
        if single and single not in users:
            users.insert(0, single)
        return users

    async def _send_notification(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        users = self._user_ids(node, context)
        if not users:
            return ExecutionResult.failed("Notification requires userId or userIds")

        created = await self.notifications.notify_users(
            users,
            self.resolve(config.get("title"), context),
            self.resolve(config.get("message"), context),
            self.resolve_map(config.get("data"), context),
            type=str(config.get("type") or "INFO").upper(),
        )
        return ExecutionResult.ok(
            {
                "notificationSent": bool(created),
                "notificationId": created[0].id if created else None,
                "recipients": [n.user_id for n in created],
            }
        )

    async def _push_notification(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        users = self._user_ids(node, context)
        if not self.notifications.is_available(ChannelType.PUSH):
            return ExecutionResult.ok({"notificationSent": False, "reason": "Push service not configured"})

        title = self.resolve(node.config.get("title"), context)
        body = self.resolve(node.config.get("message"), context)
        data = self.resolve_map(node.config.get("data"), context)
        sent = 0
        for user_id in users:
            result = await self.notifications.send_push(user_id, title, body, data)
            sent += 1 if result.sent else 0
        return ExecutionResult.ok({"notificationSent": sent > 0, "pushSent": sent})

    # ─── Chat ───

    async def _post_to_chat(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        channel = self.resolve(config.get("channel"), context)
        platform = str(config.get("platform") or "SLACK").upper()
        if not self.notifications.is_available(ChannelType.CHAT):
            return ExecutionResult.ok(
                {"messageSent": False, "reason": "Chat service not configured", "channel": channel}
            )

        result = await self.notifications.send_chat_message(
            channel,
            self.resolve(config.get("message"), context),
            {**self.resolve_map(config.get("options"), context), "platform": platform},
        )
        return ExecutionResult.ok(
            {
                "messageSent": result.sent,
                "channel": channel,
                "platform": platform,
                "chatMessageId": result.message_id,
                "reason": result.reason,
            }
        )


COMMUNICATION_HANDLERS = {
    "communication": CommunicationHandler,
}
