"""OAuth authorization URLs and code exchange for Slack and Google Chat installs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from urllib.parse import urlencode

import httpx
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.oauth import AuthorizeUrlGenerator

SLACK_SCOPES = ("commands", "chat:write", "users:read")
GOOGLE_OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CHAT_SCOPES = (
    "https://www.googleapis.com/auth/chat.bot",
    "https://www.googleapis.com/auth/chat.messages",
)


class OAuthExchangeError(Exception):
    """Raised when a platform rejects an authorization code."""


@dataclass(frozen=True)
class SlackInstallGrant:
    team_id: str
    team_name: str
    access_token: str | None
    bot_token: str


@dataclass(frozen=True)
class GoogleTokenResponse:
    access_token: str
    refresh_token: str | None


def build_slack_authorize_url(
    *, client_id: str, redirect_uri: str | None, state: str, scopes: Sequence[str] = SLACK_SCOPES
) -> str:
    generator = AuthorizeUrlGenerator(client_id=client_id, scopes=list(scopes), redirect_uri=redirect_uri)
    return generator.generate(state)


def exchange_slack_code(
    *,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str | None,
    client: WebClient | None = None,
) -> SlackInstallGrant:
    """Trade a Slack authorization code for the workspace's tokens."""

    web_client = client or WebClient()
    try:
        response = web_client.oauth_v2_access(
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            redirect_uri=redirect_uri,
        )
    except SlackApiError as exc:
        error_code = exc.response.get("error") if getattr(exc, "response", None) else str(exc)
        raise OAuthExchangeError(f"Slack OAuth exchange failed: {error_code}") from exc

    team = response.get("team") or {}
    bot_token = response.get("access_token")
    if not team.get("id") or not bot_token:
        raise OAuthExchangeError("Slack OAuth response is missing the team or bot token")

    authed_user = response.get("authed_user") or {}
    return SlackInstallGrant(
        team_id=team["id"],
        team_name=team.get("name") or team["id"],
        access_token=authed_user.get("access_token"),
        bot_token=bot_token,
    )


def build_google_authorize_url(
    *, client_id: str, redirect_uri: str, state: str, scopes: Sequence[str] = GOOGLE_CHAT_SCOPES
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "state": state,
        "access_type": "offline",
        # Google only returns a refresh token on consent.
        "prompt": "consent",
    }
    return f"{GOOGLE_OAUTH_AUTHORIZE_URL}?{urlencode(params)}"


def exchange_google_code(
    client: httpx.Client,
    *,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
) -> GoogleTokenResponse:
    res = client.post(
        GOOGLE_OAUTH_TOKEN_URL,
        data={
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    if res.status_code >= 400:
        raise OAuthExchangeError(f"Google token exchange failed with status {res.status_code}")

    payload = res.json()
    if not payload.get("access_token"):
        raise OAuthExchangeError("Google token response is missing an access token")

    return GoogleTokenResponse(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
    )
