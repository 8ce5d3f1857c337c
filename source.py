from __future__ import annotations

import typing
from dataclasses import dataclass, field

import discord

from db.models import Author, PostReference

REQUIRED_PERMISSIONS = ("view_channel", "read_message_history", "send_messages")


@dataclass(frozen=True)
class Attachment:
    url: str
    content_type: str | None
    size: int
    filename: str


@dataclass(frozen=True)
class Message:
    id: int
    author_id: str
    author_name: str
    created_at: int  # epoch milliseconds
    url: str
    attachments: list[Attachment] = field(default_factory=list)

    def post_reference(self, location: str, attachment: Attachment | None = None) -> PostReference:
        return PostReference(
            id=str(self.id),
            url=self.url,
            author=Author(id=self.author_id, username=self.author_name),
            timestamp=self.created_at,
            location=location,
            attachment_url=attachment.url if attachment else None,
            filename=attachment.filename if attachment else None,
        )


class MessageSource(typing.Protocol):
    location: str

    async def has_required_access(self) -> bool:
        ...

    async def fetch_batch(self, before: int | None, limit: int) -> list[Message]:
        """Up to ``limit`` messages strictly older than ``before``, newest first."""
        ...


def convert_message(message: discord.Message) -> Message:
    return Message(
        id=message.id,
        author_id=str(message.author.id),
        author_name=message.author.name,
        created_at=int(message.created_at.timestamp() * 1000),
        url=message.jump_url,
        attachments=[
            Attachment(
                url=attachment.url,
                content_type=attachment.content_type,
                size=attachment.size,
                filename=attachment.filename,
            )
            for attachment in message.attachments
        ],
    )


def missing_permissions(channel: discord.abc.GuildChannel | discord.Thread, member: discord.Member) -> list[str]:
    permissions = channel.permissions_for(member)
    return [perm for perm in REQUIRED_PERMISSIONS if not getattr(permissions, perm)]


def location_label(channel: discord.abc.GuildChannel | discord.Thread) -> str:
    if isinstance(channel, discord.Thread) and isinstance(channel.parent, discord.ForumChannel):
        return f"forum-post-{channel.name}"
    if isinstance(channel, discord.Thread):
        return f"thread-{channel.name}"
    return f"channel-{channel.name}"


class DiscordChannelSource:
    """Pages through a text channel or thread with discord.py's history iterator."""

    def __init__(self, channel: discord.TextChannel | discord.Thread, member: discord.Member):
        self.channel = channel
        self.member = member
        self.location = location_label(channel)

    async def has_required_access(self) -> bool:
        return not missing_permissions(self.channel, self.member)

    async def fetch_batch(self, before: int | None, limit: int) -> list[Message]:
        cursor = discord.Object(id=before) if before is not None else None
        return [convert_message(message) async for message in self.channel.history(limit=limit, before=cursor)]
