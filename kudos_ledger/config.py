"""Pydantic-based configuration helpers for the Kudos Ledger service."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator


class AppSettings(BaseModel):
    """Settings required to run the kudos webhooks and install flows."""

    database_url: str = Field(..., alias="DATABASE_URL")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    slack_client_id: str | None = Field(None, alias="SLACK_CLIENT_ID")
    slack_client_secret: str | None = Field(None, alias="SLACK_CLIENT_SECRET")
    slack_redirect_uri: str | None = Field(None, alias="SLACK_REDIRECT_URI")
    google_client_id: str | None = Field(None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(None, alias="GOOGLE_CLIENT_SECRET")
    google_project_id: str | None = Field(None, alias="GOOGLE_PROJECT_ID")
    google_redirect_uri: str = Field(
        "http://localhost:3000/auth/googlechat/callback", alias="GOOGLE_REDIRECT_URI"
    )
    google_chat_audience: str | None = Field(None, alias="GOOGLE_CHAT_AUDIENCE")
    slash_command: str = Field("/kudos", alias="KUDOS_SLASH_COMMAND")
    oauth_state_ttl_seconds: int = Field(600, alias="OAUTH_STATE_TTL_SECONDS")

    @field_validator("slash_command")
    @classmethod
    def _ensure_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("/") or len(value) < 2:
            raise ValueError("Slash command must start with '/'")
        return value

    @field_validator("oauth_state_ttl_seconds")
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("OAuth state TTL must be greater than zero")
        return value

    @property
    def slack_oauth_enabled(self) -> bool:
        return bool(self.slack_client_id and self.slack_client_secret)

    @property
    def google_oauth_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_project_id)


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        message = (
            "Missing required environment variables: "
            f"{_format_missing(missing)}"
        )
        raise RuntimeError(message) from exc
