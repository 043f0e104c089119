"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html

from biostatus.adapters.validator_keys import HUMANODE_SS58_FORMAT, format_validator_key
from biostatus.core.models import Notification, NotificationKind, Settings, ValidatorKey

LOST_TEXT = "You have lost bio-authentication to be an active validator."
SOON_EXPIRED_TEXT = "Your bio-authentication will expire soon."

_HEADLINES = {
    NotificationKind.LOST: LOST_TEXT,
    NotificationKind.SOON_EXPIRED: SOON_EXPIRED_TEXT,
}


def _escape_md(value: str) -> str:
    for ch in r"*_[`":
        value = value.replace(ch, f"\\{ch}")
    return value


def _format_markdown(notification: Notification, address: str) -> str:
    headline = _HEADLINES[notification.kind]
    return "\n".join(
        [
            f"**{_escape_md(headline)}**",
            "",
            "**Validator:**",
            f"`{address}`",
        ]
    )


def _format_html(notification: Notification, address: str) -> str:
    headline = _HEADLINES[notification.kind]
    return "\n".join(
        [
            f"<b>{html.escape(headline)}</b>",
            "",
            "<b>Validator:</b>",
            f"<code>{html.escape(address)}</code>",
        ]
    )


def format_notification(
    notification: Notification,
    ss58_format: int = HUMANODE_SS58_FORMAT,
    mode: str = "html",
) -> str:
    """Return the notification formatted for the requested mode."""

    address = format_validator_key(notification.key, ss58_format)
    if mode == "markdown":
        return _format_markdown(notification, address)
    if mode == "html":
        return _format_html(notification, address)
    raise ValueError(f"Unsupported notification format: {mode}")


def format_subscription_list(
    subscriptions: dict[ValidatorKey, Settings],
    ss58_format: int = HUMANODE_SS58_FORMAT,
) -> str:
    """Render a chat's subscriptions with their settings as HTML."""

    if not subscriptions:
        return "You are not watching any validator yet. Use /subscribe &lt;address&gt;."

    entries = sorted(
        (format_validator_key(key, ss58_format), settings) for key, settings in subscriptions.items()
    )
    lines = ["<b>Watched validators:</b>"]
    for address, settings in entries:
        lines.extend(
            [
                "",
                f"<code>{html.escape(address)}</code>",
                f"max message frequency: {settings.max_message_frequency_in_blocks} blocks",
                f"alert before expiration: {settings.alert_before_expiration_in_mins} mins",
            ]
        )
    return "\n".join(lines)
