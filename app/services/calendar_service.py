"""
Google Calendar adapter.

Reads the organizer's events as busy intervals and mirrors bookings as events.
Every call is best-effort: failures are logged and reported as "no data" so the
booking core never depends on Google being reachable.
"""
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx

from app.core.config import settings
from app.services.errors import UpstreamError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


@dataclass(frozen=True)
class BusyInterval:
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False


def _parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_busy_events(items: list[dict], d: date, tz: ZoneInfo) -> list[BusyInterval]:
    """Turn Calendar API event resources into busy intervals for `d`."""
    busy: list[BusyInterval] = []
    for item in items:
        if item.get("status") == "cancelled" or item.get("transparency") == "transparent":
            continue
        start = item.get("start") or {}
        end = item.get("end") or {}
        if "date" in start:
            first = date.fromisoformat(start["date"])
            # all-day end dates are exclusive
            last = date.fromisoformat(end["date"]) if "date" in end else first + timedelta(days=1)
            if first <= d < last:
                busy.append(BusyInterval(all_day=True))
            continue
        if "dateTime" not in start or "dateTime" not in end:
            continue
        s = _parse_dt(start["dateTime"])
        e = _parse_dt(end["dateTime"])
        if s.tzinfo is None:
            s = s.replace(tzinfo=tz)
        if e.tzinfo is None:
            e = e.replace(tzinfo=tz)
        busy.append(BusyInterval(start=s, end=e))
    return busy


class GoogleCalendarClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        calendar_id: str = "primary",
        timezone: str = "Asia/Tokyo",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._calendar_id = calendar_id
        self._tz = ZoneInfo(timezone)
        self._timeout = timeout
        self._transport = transport
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls) -> "GoogleCalendarClient":
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            refresh_token=settings.google_refresh_token,
            calendar_id=settings.google_calendar_id,
            timezone=settings.timezone,
            timeout=settings.external_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._client_id and self._client_secret and self._refresh_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _events_url(self) -> str:
        return f"{GOOGLE_CALENDAR_API}/calendars/{quote(self._calendar_id, safe='')}/events"

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        # Refresh a minute early so a token never expires mid-request
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token
        resp = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if resp.status_code != 200:
            raise UpstreamError(f"Google token refresh failed: status={resp.status_code} body={resp.text[:300]}")
        tokens = resp.json()
        access_token = tokens.get("access_token")
        if not access_token:
            raise UpstreamError("No access token in Google refresh response")
        self._access_token = access_token
        self._token_expires_at = time.monotonic() + int(tokens.get("expires_in", 3600)) - 60
        return access_token

    async def fetch_busy(self, d: date) -> list[BusyInterval]:
        """Busy intervals on `d` in the reference timezone. Never raises; [] on any failure."""
        if not self.enabled:
            return []
        day_start = datetime(d.year, d.month, d.day, tzinfo=self._tz)
        day_end = day_start + timedelta(days=1)
        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                resp = await client.get(
                    self._events_url(),
                    params={
                        "timeMin": day_start.isoformat(),
                        "timeMax": day_end.isoformat(),
                        "singleEvents": "true",
                        "orderBy": "startTime",
                        "maxResults": 250,
                    },
                    headers={"Authorization": f"Bearer {token}"},
                )
            if resp.status_code != 200:
                logger.warning("Google events list failed: status=%s body=%s", resp.status_code, resp.text[:300])
                return []
            return parse_busy_events(resp.json().get("items", []), d, self._tz)
        except Exception as e:
            logger.warning("Busy intervals unavailable for %s, ignoring external calendar: %s", d, e)
            return []

    async def create_event(self, summary: str, d: date, start_time: str, end_time: str) -> str | None:
        """Create a mirrored event. Returns the event id, or None if it could not be created."""
        if not self.enabled:
            logger.debug("Google Calendar not configured, skipping event create")
            return None
        tz_name = str(self._tz)
        body = {
            "summary": summary,
            "start": {"dateTime": f"{d.isoformat()}T{start_time}:00", "timeZone": tz_name},
            "end": {"dateTime": f"{d.isoformat()}T{end_time}:00", "timeZone": tz_name},
        }
        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                resp = await client.post(
                    self._events_url(),
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
            if resp.status_code not in (200, 201):
                logger.error("Failed to create calendar event: status=%s body=%s", resp.status_code, resp.text[:300])
                return None
            event_id = resp.json().get("id")
            logger.info("Google Calendar event created: %s", event_id)
            return event_id
        except Exception as e:
            logger.exception("Error creating calendar event: %s", e)
            return None

    async def delete_event(self, event_ref: str) -> bool:
        if not self.enabled:
            logger.debug("Google Calendar not configured, skipping event delete")
            return False
        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                resp = await client.delete(
                    f"{self._events_url()}/{quote(event_ref, safe='')}",
                    headers={"Authorization": f"Bearer {token}"},
                )
            # 410: already deleted on the Google side
            if resp.status_code not in (200, 204, 410):
                logger.error("Failed to delete calendar event %s: status=%s", event_ref, resp.status_code)
                return False
            logger.info("Google Calendar event deleted: %s", event_ref)
            return True
        except Exception as e:
            logger.exception("Error deleting calendar event %s: %s", event_ref, e)
            return False
