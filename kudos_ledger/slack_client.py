"""Thin wrapper around the Slack WebClient used for kudos announcements."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from slack_sdk import WebClient


class SlackClient:
    """Encapsulate Slack WebClient interactions for easier testing."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        return self._client

    def post_message(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]] | None = None,
        icon_emoji: str | None = None,
    ) -> Mapping[str, Any]:
        """Post *text* (and optional Block Kit *blocks*) to *channel* as the bot."""

        kwargs: dict[str, Any] = {"channel": channel, "text": text}
        if blocks:
            kwargs["blocks"] = list(blocks)
        if icon_emoji:
            kwargs["icon_emoji"] = icon_emoji
        return self._client.chat_postMessage(**kwargs)

    def get_username(self, user_id: str) -> str | None:
        """Return the workspace handle of *user_id*, the name slash commands report as ``user_name``."""

        response = self._client.users_info(user=user_id)
        user = response.get("user") or {}
        return user.get("name") or None
