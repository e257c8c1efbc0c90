"""Conversation id canonicalization.

Ids follow the session protocol's ``<user>@<server>`` convention:
``@c.us`` for direct chats, ``@g.us`` for groups, ``@broadcast`` for
broadcast lists and ``@newsletter`` for channels.
"""

from __future__ import annotations

import re

GROUP_SUFFIX = "@g.us"
CONTACT_SUFFIX = "@c.us"
BROADCAST_SUFFIX = "@broadcast"
CHANNEL_SUFFIX = "@newsletter"

KIND_PRIVATE = "private"
KIND_GROUP = "group"
KIND_CHANNEL = "channel"
KIND_BROADCAST = "broadcast"

_NON_DIGITS = re.compile(r"[^\d+]")


def is_group_id(value: str | None) -> bool:
    return bool(value) and value.endswith(GROUP_SUFFIX)


def normalize_phone_number(value: str) -> str:
    """``"+1 (555) 010-2030"`` -> ``"15550102030@c.us"``."""
    cleaned = _NON_DIGITS.sub("", value).lstrip("+")
    return f"{cleaned}{CONTACT_SUFFIX}"


def normalize_group_id(value: str) -> str:
    return value if "@" in value else f"{value}{GROUP_SUFFIX}"


def canonical_conversation_id(value: str) -> str:
    value = value.strip()
    if value.endswith((GROUP_SUFFIX, BROADCAST_SUFFIX, CHANNEL_SUFFIX)):
        return value
    return normalize_phone_number(value)


def conversation_kind(conversation_id: str) -> str:
    if conversation_id.endswith(GROUP_SUFFIX):
        return KIND_GROUP
    if conversation_id.endswith(BROADCAST_SUFFIX):
        return KIND_BROADCAST
    if conversation_id.endswith(CHANNEL_SUFFIX):
        return KIND_CHANNEL
    return KIND_PRIVATE


def user_part(value: str) -> str:
    return value.split("@", 1)[0] if value else value
