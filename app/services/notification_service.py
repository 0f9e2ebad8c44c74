import logging
from datetime import date
from typing import Literal

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

NotificationKind = Literal["created", "cancelled"]

_TITLES = {
    "created": "New booking",
    "cancelled": "Booking cancelled",
}


def build_admin_message(kind: NotificationKind, recipient_name: str | None, d: date, time_range: str) -> str:
    weekday = d.strftime("%a")
    return (
        f"[{_TITLES[kind]}]\n"
        f"Name: {recipient_name or 'Unknown'}\n"
        f"Date: {d.isoformat()} ({weekday})\n"
        f"Time: {time_range}"
    )


class LineNotifier:
    """Pushes booking lifecycle messages to the admin's LINE account via the Messaging API."""

    def __init__(
        self,
        channel_access_token: str,
        admin_user_id: str,
        push_url: str = "https://api.line.me/v2/bot/message/push",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = channel_access_token
        self._admin_user_id = admin_user_id
        self._push_url = push_url
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "LineNotifier":
        return cls(
            channel_access_token=settings.line_channel_access_token,
            admin_user_id=settings.line_admin_user_id,
            push_url=settings.line_push_url,
            timeout=settings.external_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._admin_user_id)

    async def notify(self, kind: NotificationKind, recipient_name: str | None, d: date, time_range: str) -> None:
        """Best-effort push; logs and returns on any failure."""
        if not self.enabled:
            logger.debug("LINE push disabled (token or admin user not configured), skipping %s", kind)
            return
        text = build_admin_message(kind, recipient_name, d, time_range)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self._push_url,
                    json={"to": self._admin_user_id, "messages": [{"type": "text", "text": text}]},
                    headers={"Authorization": f"Bearer {self._token}"},
                )
            if resp.status_code != 200:
                logger.warning("LINE push failed: status=%s body=%s", resp.status_code, resp.text[:300])
                return
            logger.info("LINE %s notification sent for %s %s", kind, d, time_range)
        except Exception as e:
            logger.exception("Failed to send LINE %s notification: %s", kind, e)
