"""
Email channel adapter.

Sends transactional email through one of the supported HTTP providers:
- resend   (JSON, Bearer auth)
- sendgrid (JSON v3 mail/send, Bearer auth, 202 on success)
- mailgun  (form data to <endpoint>/messages, Basic auth api:<key>)
- custom   (JSON of the generic request, Bearer auth, explicit endpoint)

Every message carries an HTML and a plain-text body. Optional
metadata["preheader"], metadata["ctaText"] and metadata["ctaUrl"] shape the
templates.
"""

import html
import logging
import re
from typing import Optional, Dict, Any

import httpx

from app.services.notifications.channels.base import NotificationChannel
from app.services.notifications.exceptions import (
    ChannelNotConfiguredError,
    ChannelSendFailedError,
    InvalidNotificationDataError,
)
from app.services.notifications.models import ChannelType, Notification

logger = logging.getLogger(__name__)

EMAIL_HTTP_TIMEOUT = httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PROVIDER_ENDPOINTS = {
    "resend": "https://api.resend.com/emails",
    "sendgrid": "https://api.sendgrid.com/v3/mail/send",
    "mailgun": "https://api.mailgun.net/v3",
    "custom": "",
}

DEFAULT_SUBJECTS = {
    "payment_pending": "Payment Pending - Action Required",
    "payment_confirmed": "Payment Confirmed",
    "payment_rejected": "Payment Rejected",
    "subscription_expiring": "Your Subscription is Expiring Soon",
    "subscription_expired": "Your Subscription Has Expired",
    "welcome": "Welcome to Our Platform",
    "password_reset": "Password Reset Request",
}

TYPE_ICONS = {
    "payment_pending": "⏳",
    "payment_confirmed": "✅",
    "payment_rejected": "❌",
    "subscription_expiring": "⚠️",
    "subscription_expired": "🔴",
    "welcome": "👋",
    "password_reset": "🔐",
}
DEFAULT_ICON = "📧"

PRIMARY_COLOR = "#3b82f6"
BACKGROUND_COLOR = "#f3f4f6"


def is_valid_email(address: str) -> bool:
    return bool(address) and EMAIL_PATTERN.match(address) is not None


def _escape(text: str) -> str:
    return html.escape(text or "", quote=True)


class EmailChannel(NotificationChannel):
    channel = ChannelType.EMAIL

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str = "SaaS App",
        provider: str = "resend",
        api_endpoint: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if provider not in PROVIDER_ENDPOINTS:
            raise ValueError(f"Unsupported email provider: {provider}")
        self.api_key = api_key or ""
        self.from_email = from_email or ""
        self.from_name = from_name
        self.provider = provider
        self.api_endpoint = api_endpoint or PROVIDER_ENDPOINTS[provider]
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def template_data(self, notification: Notification) -> Dict[str, Optional[str]]:
        metadata = notification.metadata or {}
        type_key = getattr(notification.type, "value", notification.type)
        return {
            "subject": notification.subject or DEFAULT_SUBJECTS.get(type_key, "Notification"),
            "body": notification.body,
            "preheader": metadata.get("preheader"),
            "cta_text": metadata.get("ctaText"),
            "cta_url": metadata.get("ctaUrl"),
        }

    def render_html(self, notification: Notification, data: Dict[str, Optional[str]]) -> str:
        type_key = getattr(notification.type, "value", notification.type)
        icon = TYPE_ICONS.get(type_key, DEFAULT_ICON)

        preheader = ""
        if data["preheader"]:
            preheader = (
                '<span style="display:none;font-size:1px;color:#ffffff;line-height:1px;'
                'max-height:0px;max-width:0px;opacity:0;overflow:hidden;">'
                f"{_escape(data['preheader'])}</span>"
            )

        cta_button = ""
        if data["cta_url"] and data["cta_text"]:
            cta_button = f"""
          <tr>
            <td style="padding: 20px 40px;">
              <a href="{_escape(data['cta_url'])}"
                 style="display: inline-block; padding: 12px 24px; background-color: {PRIMARY_COLOR};
                        color: white; text-decoration: none; border-radius: 6px; font-weight: 600;">
                {_escape(data['cta_text'])}
              </a>
            </td>
          </tr>"""

        body_html = _escape(data["body"]).replace("\n", "<br>")

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{_escape(data['subject'])}</title>
  {preheader}
</head>
<body style="margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: {BACKGROUND_COLOR};">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color: {BACKGROUND_COLOR};">
    <tr>
      <td align="center" style="padding: 40px 20px;">
        <table role="presentation" width="600" cellspacing="0" cellpadding="0" style="background-color: white; border-radius: 8px;">
          <tr>
            <td style="padding: 30px 40px; border-bottom: 1px solid #e5e7eb;">
              <h1 style="margin: 0; font-size: 24px; color: #111827;">{icon} {_escape(data['subject'])}</h1>
            </td>
          </tr>
          <tr>
            <td style="padding: 30px 40px;">
              <p style="margin: 0; font-size: 16px; line-height: 1.6; color: #374151;">{body_html}</p>
            </td>
          </tr>{cta_button}
          <tr>
            <td style="padding: 20px 40px; border-top: 1px solid #e5e7eb; background-color: #f9fafb;">
              <p style="margin: 0; font-size: 12px; color: #6b7280; text-align: center;">
                This email was sent by {_escape(self.from_name)}.<br>
                If you have any questions, please contact support.
              </p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""

    def render_text(self, data: Dict[str, Optional[str]]) -> str:
        subject = data["subject"]
        parts = [subject, "=" * len(subject), "", data["body"]]
        if data["cta_url"] and data["cta_text"]:
            parts.extend(["", f"{data['cta_text']}: {data['cta_url']}"])
        parts.extend(["", "---", f"Sent by {self.from_name}"])
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>" if self.from_name else self.from_email

    async def deliver(self, notification: Notification) -> None:
        if not self.is_configured():
            raise ChannelNotConfiguredError("Email API key or sender address is not set")
        if not is_valid_email(notification.recipient):
            raise InvalidNotificationDataError("Invalid email recipient")

        data = self.template_data(notification)
        message = {
            "from": self.sender,
            "to": notification.recipient,
            "subject": data["subject"],
            "html": self.render_html(notification, data),
            "text": self.render_text(data),
        }

        try:
            if self.provider == "resend":
                await self._send_via_resend(message)
            elif self.provider == "sendgrid":
                await self._send_via_sendgrid(message)
            elif self.provider == "mailgun":
                await self._send_via_mailgun(message)
            else:
                await self._send_via_custom(message)
        except httpx.HTTPError as e:
            logger.warning(
                f"EMAIL_SEND_TRANSPORT_ERROR provider={self.provider} notification_id={notification.id} error={type(e).__name__}"
            )
            raise ChannelSendFailedError(str(e) or "Unknown error sending email") from e

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, **kwargs)
        async with httpx.AsyncClient(timeout=EMAIL_HTTP_TIMEOUT) as client:
            return await client.post(url, **kwargs)

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _bearer_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def _send_via_resend(self, message: Dict[str, str]) -> None:
        response = await self._post(
            self.api_endpoint,
            headers=self._bearer_headers(),
            json={
                "from": message["from"],
                "to": [message["to"]],
                "subject": message["subject"],
                "html": message["html"],
                "text": message["text"],
            },
        )
        if not response.is_success:
            error = self._json(response).get("message")
            raise ChannelSendFailedError(error or "Failed to send email via Resend")

    async def _send_via_sendgrid(self, message: Dict[str, str]) -> None:
        response = await self._post(
            self.api_endpoint,
            headers=self._bearer_headers(),
            json={
                "personalizations": [{"to": [{"email": message["to"]}]}],
                "from": {"email": self.from_email, "name": self.from_name},
                "subject": message["subject"],
                "content": [
                    {"type": "text/plain", "value": message["text"]},
                    {"type": "text/html", "value": message["html"]},
                ],
            },
        )
        if not response.is_success:
            errors = self._json(response).get("errors") or []
            error = errors[0].get("message") if errors and isinstance(errors[0], dict) else None
            raise ChannelSendFailedError(error or "Failed to send email via SendGrid")

    async def _send_via_mailgun(self, message: Dict[str, str]) -> None:
        response = await self._post(
            f"{self.api_endpoint.rstrip('/')}/messages",
            auth=("api", self.api_key),
            data={
                "from": message["from"],
                "to": message["to"],
                "subject": message["subject"],
                "html": message["html"],
                "text": message["text"],
            },
        )
        if not response.is_success:
            error = self._json(response).get("message")
            raise ChannelSendFailedError(error or "Failed to send email via Mailgun")

    async def _send_via_custom(self, message: Dict[str, str]) -> None:
        if not self.api_endpoint:
            raise ChannelNotConfiguredError("Custom email endpoint not configured")
        response = await self._post(self.api_endpoint, headers=self._bearer_headers(), json=message)
        data = self._json(response)
        if not response.is_success or data.get("success") is False:
            raise ChannelSendFailedError(data.get("error") or "Failed to send email")
