"""Parsing of ``/kudos`` command text for each chat platform.

A command names one recipient followed by a free-text description::

    /kudos <@U123ABC> shipped the release      (Slack)
    /kudos <users/1049> shipped the release    (Google Chat)
    /kudos @alice shipped the release          (either, legacy)

The recipient is returned as a :data:`Mention`: an :class:`ExplicitId` that
still has to go through the identity resolver, or a :class:`LiteralUsername`
that is used as-is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar, Pattern, Union

DEFAULT_COMMAND = "/kudos"


class MalformedCommand(ValueError):
    """Raised when command text cannot be turned into a recipient and description."""

    def __init__(self, message: str, *, usage: str) -> None:
        super().__init__(message)
        self.usage = usage


@dataclass(frozen=True)
class ExplicitId:
    """Platform-native user identifier taken from a bracketed mention."""

    value: str


@dataclass(frozen=True)
class LiteralUsername:
    """Username given with the legacy ``@name`` form."""

    value: str


Mention = Union[ExplicitId, LiteralUsername]


@dataclass(frozen=True)
class ParsedCommand:
    mention: Mention
    description: str


class CommandParser:
    """Split command text into a mention and a description.

    Subclasses provide ``mention_pattern`` (one capture group holding the
    platform user id) and ``mention_example`` for usage hints.
    """

    mention_pattern: ClassVar[Pattern[str]]
    mention_example: ClassVar[str]
    platform_label: ClassVar[str]

    def __init__(self, command: str = DEFAULT_COMMAND) -> None:
        self.command = command

    @property
    def usage(self) -> str:
        return f"Usage: `{self.command} @user description` or `{self.command} {self.mention_example} description`"

    def parse(self, raw_text: str) -> ParsedCommand:
        tokens = (raw_text or "").split()
        if tokens and tokens[0] == self.command:
            tokens = tokens[1:]

        if len(tokens) < 2:
            raise MalformedCommand(
                f"Command format: {self.command} @user description", usage=self.usage
            )

        mention = self.parse_mention(tokens[0])
        return ParsedCommand(mention=mention, description=" ".join(tokens[1:]))

    def parse_mention(self, token: str) -> Mention:
        match = self.mention_pattern.match(token)
        if match:
            return ExplicitId(match.group(1))

        if token.startswith("@") and len(token) > 1:
            return LiteralUsername(token[1:])

        raise MalformedCommand(
            f"User must be mentioned with @ or the {self.platform_label} mention format",
            usage=self.usage,
        )


class SlackCommandParser(CommandParser):
    # Slack escapes mentions as <@U123> or <@U123|display-name>.
    mention_pattern = re.compile(r"^<@([A-Z0-9]+)(?:\|[^>]*)?>$")
    mention_example = "<@U1234567890>"
    platform_label = "Slack"


class GoogleChatCommandParser(CommandParser):
    mention_pattern = re.compile(r"^<users/([^>]+)>$")
    mention_example = "<users/USER_ID>"
    platform_label = "Google Chat"


def is_kudos_command(text: str, command: str = DEFAULT_COMMAND) -> bool:
    """Return True when *text* starts with the command as a whole word."""

    if not text or not text.startswith(command):
        return False
    rest = text[len(command):]
    return rest == "" or rest[0].isspace()
