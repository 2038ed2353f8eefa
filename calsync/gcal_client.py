from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable
from urllib.parse import quote

import requests

from calsync.models import PRIMARY_CALENDAR_ID, GoogleConfig, SchedulingConfig

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"
TOKEN_EXPIRY_BUFFER_MS = 60_000
GONE_STATUS_CODES = {404, 410}


class CredentialError(RuntimeError):
    """No usable bearer token: nothing in the current pass can succeed."""


class GatewayError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_number(value: float) -> str:
    rounded = Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{rounded:f}".rstrip("0").rstrip(".")


def completion_description(estimated_minutes: int, actual_minutes: int | None) -> str:
    estimated_hours = format_number(estimated_minutes / 60)
    if actual_minutes is not None and actual_minutes > 0:
        required = f"{format_number(actual_minutes / 60)}hrs"
        factor = format_number(actual_minutes / estimated_minutes)
    else:
        required = "unavailable"
        factor = "unavailable"
    return (
        "Completed.\n"
        f"Time Estimated: {estimated_hours}hrs\n"
        f"Time Required: {required}\n"
        f"Factor: {factor}"
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


class GoogleCalendarService:
    def __init__(
        self,
        config: GoogleConfig,
        scheduling: SchedulingConfig,
        *,
        on_token_refresh: Callable[[str, int], None] | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.config = config
        self.scheduling = scheduling
        self.on_token_refresh = on_token_refresh
        self.session = session or requests.Session()
        self.clock = clock

    def _events_endpoint(self, event_id: str = "") -> str:
        calendar_id = quote(self.scheduling.calendar_id or PRIMARY_CALENDAR_ID, safe="")
        base = f"{CALENDAR_API}/calendars/{calendar_id}/events"
        if event_id:
            return f"{base}/{quote(event_id, safe='')}"
        return base

    def ensure_access_token(self) -> str:
        if self.config.access_token and self.clock() < self.config.token_expiry - TOKEN_EXPIRY_BUFFER_MS:
            return self.config.access_token
        if not self.config.refresh_token:
            raise CredentialError("No refresh token. Run `calsync auth` to authenticate.")
        try:
            response = self.session.post(
                TOKEN_URL,
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "refresh_token": self.config.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
            access_token = str(payload["access_token"])
            expires_in = int(payload.get("expires_in", 3600))
        except (requests.RequestException, ValueError, KeyError) as exc:
            raise CredentialError(f"Token refresh failed: {type(exc).__name__}: {exc}") from exc

        self.config.access_token = access_token
        self.config.token_expiry = self.clock() + expires_in * 1000
        logger.debug("Refreshed access token, expires in %ss", expires_in)
        if self.on_token_refresh is not None:
            self.on_token_refresh(self.config.access_token, self.config.token_expiry)
        return access_token

    def _request(self, method: str, url: str, *, json_body: dict[str, Any] | None = None) -> requests.Response:
        token = self.ensure_access_token()
        headers = {"Authorization": f"Bearer {token}"}
        if json_body is not None:
            headers["Content-Type"] = "application/json"
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"{method} {url} failed: {type(exc).__name__}: {exc}") from exc
        if not response.ok:
            raise GatewayError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        return response

    def _event_body(self, title: str, start: datetime, duration_minutes: int) -> dict[str, Any]:
        end = start + timedelta(minutes=duration_minutes)
        return {
            "summary": title,
            "start": {"dateTime": start.isoformat(), "timeZone": self.scheduling.time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.scheduling.time_zone},
        }

    def create_event(self, title: str, start: datetime, duration_minutes: int) -> str:
        response = self._request("POST", self._events_endpoint(), json_body=self._event_body(title, start, duration_minutes))
        event_id = str(response.json().get("id", "")).strip()
        if not event_id:
            raise GatewayError("Create response did not include an event id.")
        return event_id

    def update_event(self, event_id: str, title: str, start: datetime, duration_minutes: int) -> None:
        self._request("PUT", self._events_endpoint(event_id), json_body=self._event_body(title, start, duration_minutes))

    def patch_description(self, event_id: str, text: str) -> None:
        self._request("PATCH", self._events_endpoint(event_id), json_body={"description": text})

    def mark_event_completed(self, event_id: str, estimated_minutes: int, actual_minutes: int | None) -> None:
        self.patch_description(event_id, completion_description(estimated_minutes, actual_minutes))

    def delete_event(self, event_id: str) -> bool:
        try:
            self._request("DELETE", self._events_endpoint(event_id))
        except GatewayError as exc:
            if exc.status_code in GONE_STATUS_CODES:
                logger.info("Event %s already gone on the calendar", event_id)
                return False
            raise
        return True
