"""Telegram bot command adapter.

Turns incoming chat commands into core subscription commands. Parsing is a
pure function so it can be tested without Telethon; the handler applies the
parsed request against the orchestrator and returns the reply text.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from telethon import events

from biostatus.adapters.notification_formatting import format_subscription_list
from biostatus.adapters.validator_keys import format_validator_key, parse_validator_address
from biostatus.core.errors import InvalidValidatorKey
from biostatus.core.models import (
    ChatId,
    SetAnnouncements,
    Subscribe,
    SubscriptionCommand,
    Unsubscribe,
    UnsubscribeAll,
    UpdateAlertLeadTime,
    UpdateMaxFrequency,
)
from biostatus.core.orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)

MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1

WELCOME_MESSAGE = """Welcome to the validator bio-authentication watcher!

Here you can set up notifications for when your validator loses its
bio-authentication, and alerts shortly before it expires.

Use /subscribe &lt;address&gt; to start watching a validator.
Use /help to display bot usage instructions."""

HELP_MESSAGE = """These commands are supported:

/subscribe &lt;address&gt; - watch a validator (hm...)
/unsubscribe &lt;address&gt; - stop watching a validator
/unsubscribeall - stop watching every validator
/subscriptions - list watched validators and their settings
/setfrequency &lt;address&gt; &lt;blocks&gt; - maximum message frequency in blocks (~6 sec per block)
/setalertbefore &lt;address&gt; &lt;mins&gt; - alert this many minutes before expiration
/announcements on|off - receive announcements from the team
/help - display this text"""

UNKNOWN_MESSAGE = "Unknown command. Try /help for list of commands."


@dataclass(frozen=True)
class Reply:
    text: str


@dataclass(frozen=True)
class Update:
    command: SubscriptionCommand
    reply: str


@dataclass(frozen=True)
class ListSubscriptions:
    pass


@dataclass(frozen=True)
class Broadcast:
    text: str


BotRequest = Union[Reply, Update, ListSubscriptions, Broadcast]


def _split_command(text: str) -> tuple[str, list[str], str]:
    head, _, rest = text.strip().partition(" ")
    # Group chats address commands as /cmd@botname.
    name = head.split("@", 1)[0].lower()
    return name, rest.split(), rest.strip()


def _parse_positive(value: str, upper: int) -> Optional[int]:
    if not value.isdigit():
        return None
    number = int(value)
    if number < 1 or number > upper:
        return None
    return number


def parse_command(chat_id: ChatId, text: str, ss58_format: Optional[int]) -> BotRequest:
    """Parse one chat message into a bot request."""

    name, args, rest = _split_command(text)

    if name == "/start":
        return Reply(WELCOME_MESSAGE)
    if name == "/help":
        return Reply(HELP_MESSAGE)
    if name == "/subscriptions":
        return ListSubscriptions()
    if name == "/unsubscribeall":
        return Update(UnsubscribeAll(chat_id), "All validator subscriptions removed.")
    if name == "/adminnotify":
        if not rest:
            return Reply("Usage: /adminnotify &lt;text&gt;")
        return Broadcast(rest)
    if name == "/announcements":
        if len(args) != 1 or args[0].lower() not in {"on", "off"}:
            return Reply("Usage: /announcements on|off")
        enabled = args[0].lower() == "on"
        reply = "Team announcements enabled." if enabled else "Team announcements disabled."
        return Update(SetAnnouncements(chat_id, enabled), reply)

    if name in {"/subscribe", "/unsubscribe"}:
        if len(args) != 1:
            return Reply(f"Usage: {name} &lt;address&gt;")
    elif name in {"/setfrequency", "/setalertbefore"}:
        if len(args) != 2:
            unit = "blocks" if name == "/setfrequency" else "mins"
            return Reply(f"Usage: {name} &lt;address&gt; &lt;{unit}&gt;")
    else:
        return Reply(UNKNOWN_MESSAGE)

    try:
        key = parse_validator_address(args[0], ss58_format)
    except InvalidValidatorKey as exc:
        return Reply(f"Invalid address: {html.escape(str(exc))}")

    if name == "/subscribe":
        return Update(
            Subscribe(chat_id, key),
            "Validator address successfully added.\n"
            "You will now receive notifications according to your settings.",
        )
    if name == "/unsubscribe":
        return Update(Unsubscribe(chat_id, key), "Validator address removed.")
    if name == "/setfrequency":
        blocks = _parse_positive(args[1], MAX_U32)
        if blocks is None:
            return Reply("Enter a positive number of blocks.")
        return Update(UpdateMaxFrequency(chat_id, key, blocks), "Maximum message frequency updated.")

    mins = _parse_positive(args[1], MAX_U64)
    if mins is None:
        return Reply("Enter a positive number of minutes.")
    return Update(UpdateAlertLeadTime(chat_id, key, mins), "Alert time before expiration updated.")


class CommandHandler:
    """Applies parsed bot requests against the orchestrator."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        ss58_format: int,
        admin_chat_ids: Iterable[ChatId] = (),
    ) -> None:
        self._orchestrator = orchestrator
        self._ss58_format = ss58_format
        self._admin_chat_ids = set(admin_chat_ids)

    async def handle(self, chat_id: ChatId, text: str) -> Optional[str]:
        """Return the reply for one incoming command message."""

        request = parse_command(chat_id, text, self._ss58_format)

        if isinstance(request, Reply):
            return request.text

        if isinstance(request, ListSubscriptions):
            subscriptions = await self._orchestrator.subscriptions_for(chat_id)
            return format_subscription_list(subscriptions, self._ss58_format)

        if isinstance(request, Broadcast):
            if chat_id not in self._admin_chat_ids:
                return UNKNOWN_MESSAGE
            delivered = await self._orchestrator.broadcast(request.text)
            return f"Sent this text to {len(delivered)} chats."

        command = request.command
        if isinstance(command, (UpdateMaxFrequency, UpdateAlertLeadTime)):
            subscriptions = await self._orchestrator.subscriptions_for(chat_id)
            if command.key not in subscriptions:
                address = format_validator_key(command.key, self._ss58_format)
                return f"You are not subscribed to {html.escape(address)}."

        await self._orchestrator.submit(command)
        return request.reply


def register_handlers(client, handler: CommandHandler) -> None:
    """Attach the command handler to a Telethon client."""

    @client.on(events.NewMessage(incoming=True, pattern=r"^/"))
    async def on_command(event) -> None:
        try:
            reply = await handler.handle(event.chat_id, event.raw_text or "")
            if reply:
                await event.respond(reply, parse_mode="html")
        except Exception:
            LOGGER.exception("Error while handling command from chat %s", event.chat_id)
