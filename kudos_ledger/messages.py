"""Response text for kudos commands on each platform."""

from __future__ import annotations

from typing import Any, Dict

from kudos_ledger.commands import ExplicitId, MalformedCommand, Mention

INSTALL_REQUIRED_TEXT = "This app is not installed for this workspace. Please install it first."
GOOGLE_INSTALL_REQUIRED_TEXT = (
    "This app is not installed for this Google Chat space. Please visit /auth/googlechat to install."
)
GENERIC_FAILURE_TEXT = "Something went wrong while recording your kudos. Please try again later."
KUDOS_ICON_EMOJI = ":tada:"


def slack_mention(mention: Mention) -> str:
    if isinstance(mention, ExplicitId):
        return f"<@{mention.value}>"
    return f"@{mention.value}"


def google_chat_mention(mention: Mention) -> str:
    if isinstance(mention, ExplicitId):
        return f"<users/{mention.value}>"
    return f"@{mention.value}"


def build_slack_kudos_message(*, mention: Mention, description: str, total: int) -> Dict[str, Any]:
    """Channel announcement with a plain-text fallback and a section block."""

    text = f"Kudos to {slack_mention(mention)} for {description}! :tada:\nThey now have {total} total kudos."
    return {
        "text": text,
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
        ],
    }


def build_google_chat_kudos_message(*, mention: Mention, description: str, total: int) -> Dict[str, Any]:
    return {
        "text": (
            f"\U0001f389 Kudos to {google_chat_mention(mention)} for {description}!\n\n"
            f"They now have *{total}* total kudos."
        )
    }


def format_usage_error(exc: MalformedCommand) -> str:
    return f"{exc}\n\n{exc.usage}"


def build_google_chat_error(text: str) -> Dict[str, Any]:
    return {"text": f"❌ {text}"}
