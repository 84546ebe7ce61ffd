"""
Telegram channel adapter.

Sends HTML-formatted messages through an aiogram Bot. The chat is picked in
this order: metadata["telegramChatId"], the recipient itself when it looks
like a chat id (numeric or @username), then the configured default chat.
metadata["telegramButtons"] adds one row of inline URL / callback buttons.
"""

import html
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramForbiddenError
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, User

from app.services.notifications.channels.base import NotificationChannel
from app.services.notifications.exceptions import ChannelNotConfiguredError, ChannelSendFailedError
from app.services.notifications.models import ChannelType, Notification

logger = logging.getLogger(__name__)

CHAT_ID_PATTERN = re.compile(r"^-?\d+$")

TYPE_EMOJI = {
    "payment_pending": "⏳",
    "payment_confirmed": "✅",
    "payment_rejected": "❌",
    "subscription_expiring": "⚠️",
    "subscription_expired": "🔴",
    "welcome": "👋",
    "password_reset": "🔐",
}
DEFAULT_EMOJI = "📢"

TYPE_TITLE = {
    "payment_pending": "Payment Pending",
    "payment_confirmed": "Payment Confirmed",
    "payment_rejected": "Payment Rejected",
    "subscription_expiring": "Subscription Expiring",
    "subscription_expired": "Subscription Expired",
    "welcome": "Welcome",
    "password_reset": "Password Reset",
}
DEFAULT_TITLE = "Notification"


def _type_key(notification: Notification) -> str:
    return getattr(notification.type, "value", notification.type)


class TelegramChannel(NotificationChannel):
    channel = ChannelType.TELEGRAM

    def __init__(self, bot_token: str, default_chat_id: Optional[str] = None, bot: Optional[Bot] = None):
        self.bot_token = bot_token or ""
        self.default_chat_id = default_chat_id or None
        self._bot = bot

    def is_configured(self) -> bool:
        return bool(self.bot_token)

    @property
    def bot(self) -> Bot:
        # Bot() validates the token format, so it is only built once configured
        if self._bot is None:
            if not self.is_configured():
                raise ChannelNotConfiguredError("Telegram bot token is not set")
            self._bot = Bot(token=self.bot_token)
        return self._bot

    async def close(self) -> None:
        if self._bot is not None:
            await self._bot.session.close()

    def resolve_chat_id(self, notification: Notification) -> Optional[str]:
        metadata_chat_id = (notification.metadata or {}).get("telegramChatId")
        if isinstance(metadata_chat_id, (str, int)) and not isinstance(metadata_chat_id, bool) and str(metadata_chat_id):
            return str(metadata_chat_id)

        recipient = notification.recipient or ""
        if CHAT_ID_PATTERN.match(recipient) or recipient.startswith("@"):
            return recipient

        return self.default_chat_id

    def format_message(self, notification: Notification, now: Optional[datetime] = None) -> str:
        """
        HTML message: emoji and bold heading, blank line, escaped body,
        blank line, italic UTC timestamp.
        """
        now = now or datetime.now(timezone.utc)
        type_key = _type_key(notification)
        emoji = TYPE_EMOJI.get(type_key, DEFAULT_EMOJI)
        heading = notification.subject or TYPE_TITLE.get(type_key, DEFAULT_TITLE)

        parts = [
            f"{emoji} <b>{html.escape(heading, quote=False)}</b>",
            "",
            html.escape(notification.body, quote=False),
            "",
            f"<i>{now.isoformat()}</i>",
        ]
        return "\n".join(parts)

    def build_keyboard(self, buttons: Optional[List[Dict[str, Any]]]) -> Optional[InlineKeyboardMarkup]:
        """
        One inline keyboard row from [{"text", "url"?, "callback_data"?}, ...].
        Entries without text are skipped; None when nothing is left.
        """
        row = [
            InlineKeyboardButton(
                text=str(button["text"]),
                url=button.get("url"),
                callback_data=button.get("callback_data"),
            )
            for button in (buttons or [])
            if isinstance(button, dict) and button.get("text")
        ]
        if not row:
            return None
        return InlineKeyboardMarkup(inline_keyboard=[row])

    async def deliver(self, notification: Notification) -> None:
        chat_id = self.resolve_chat_id(notification)
        if not chat_id:
            raise ChannelNotConfiguredError("No chat ID provided for Telegram notification")

        text = self.format_message(notification)
        keyboard = self.build_keyboard((notification.metadata or {}).get("telegramButtons"))
        await self._send(chat_id, text, keyboard, notification.id)

    async def send_with_buttons(self, chat_id: str, text: str, buttons: List[Dict[str, Any]]) -> None:
        """
        Send pre-formatted HTML text with a row of inline buttons.

        Raises:
            ChannelNotConfiguredError: Without a bot token
            ChannelSendFailedError: On any Telegram API error
        """
        await self._send(chat_id, text, self.build_keyboard(buttons), None)

    async def get_me(self) -> User:
        """
        Bot identity from Telegram; verifies the token.

        Raises:
            ChannelNotConfiguredError: Without a bot token
            ChannelSendFailedError: If Telegram rejects the call
        """
        try:
            return await self.bot.get_me()
        except TelegramAPIError as e:
            logger.warning(f"TELEGRAM_GET_ME_FAILED error={e}")
            raise ChannelSendFailedError(str(e) or "Failed to reach Telegram") from e

    async def health_check(self) -> bool:
        if not self.is_configured():
            return False
        try:
            await self.get_me()
        except ChannelSendFailedError:
            return False
        return True

    async def _send(
        self,
        chat_id: str,
        text: str,
        keyboard: Optional[InlineKeyboardMarkup],
        notification_id: Optional[str],
    ) -> None:
        try:
            await self.bot.send_message(
                chat_id,
                text,
                parse_mode="HTML",
                disable_web_page_preview=True,
                reply_markup=keyboard,
            )
        except TelegramForbiddenError as e:
            logger.warning(f"TELEGRAM_SEND_FORBIDDEN notification_id={notification_id}")
            raise ChannelSendFailedError(str(e) or "Bot was blocked by the user") from e
        except TelegramBadRequest as e:
            logger.warning(f"TELEGRAM_SEND_BAD_REQUEST notification_id={notification_id} error={e}")
            raise ChannelSendFailedError(str(e) or "Telegram rejected the message") from e
        except TelegramAPIError as e:
            logger.warning(f"TELEGRAM_SEND_FAILED notification_id={notification_id} error={e}")
            raise ChannelSendFailedError(str(e) or "Failed to send Telegram message") from e
