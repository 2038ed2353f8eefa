from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from calsync.config_manager import ConfigManager
from calsync.gcal_client import TOKEN_URL
from calsync.models import GoogleConfig

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar.events"
LOOPBACK_HOST = "127.0.0.1"
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_TOKEN_LIFETIME_MS = 3600 * 1000

SUCCESS_MESSAGE = "Authenticated! You can close this tab and return to your terminal."


class OAuthError(RuntimeError):
    pass


def client_config(google: GoogleConfig) -> dict[str, Any]:
    return {
        "installed": {
            "client_id": google.client_id,
            "client_secret": google.client_secret,
            "auth_uri": AUTH_URL,
            "token_uri": TOKEN_URL,
            "redirect_uris": [f"http://{LOOPBACK_HOST}"],
        }
    }


def build_flow(google: GoogleConfig) -> InstalledAppFlow:
    if not google.client_id or not google.client_secret:
        raise OAuthError("Set google.client_id and google.client_secret before authenticating.")
    return InstalledAppFlow.from_client_config(client_config(google), scopes=[CALENDAR_SCOPE])


def _expiry_ms(expiry: datetime | None) -> int:
    # google-auth reports expiry as naive UTC
    if expiry is None:
        return int(time.time() * 1000) + DEFAULT_TOKEN_LIFETIME_MS
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return int(expiry.timestamp() * 1000)


def authorize(
    config_manager: ConfigManager,
    *,
    open_browser: bool = True,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    """Run the installed-app consent flow and store the resulting tokens.

    The flow listens once on an ephemeral loopback port and gives up after
    ``timeout`` seconds. An existing refresh token is kept when Google does
    not issue a new one.
    """
    google = config_manager.load().google
    flow = build_flow(google)
    try:
        credentials = flow.run_local_server(
            host=LOOPBACK_HOST,
            port=0,
            open_browser=open_browser,
            timeout_seconds=timeout,
            success_message=SUCCESS_MESSAGE,
            access_type="offline",
            prompt="consent",
        )
    except OAuth2Error as exc:
        raise OAuthError(f"Google OAuth error: {exc.error}") from exc
    except AttributeError as exc:
        # run_local_server has no redirect to parse once its timeout lapses
        raise OAuthError(f"OAuth timed out: no response within {timeout} seconds.") from exc
    except OSError as exc:
        raise OAuthError(f"Could not start the OAuth callback listener: {exc}") from exc

    if not credentials.token:
        raise OAuthError("Google did not return an access token.")
    update: dict[str, Any] = {
        "access_token": credentials.token,
        "token_expiry": _expiry_ms(credentials.expiry),
    }
    if credentials.refresh_token:
        update["refresh_token"] = credentials.refresh_token
    config_manager.update({"google": update})
    logger.info("Google Calendar authenticated")
