import datetime
import logging

import discord
from discord.ext import commands

from scanner import ImageOutcome, IngestionScanner
from source import DiscordChannelSource, convert_message

DUPE_COLOR = 0xFF0000
SELF_REPOST_COLOR = 0xFFA500


def outcome_embed(outcome: ImageOutcome) -> discord.Embed:
    self_repost = outcome.is_self_repost
    embed = discord.Embed(
        title="SELF-REPOST" if self_repost else "DUPE",
        description=f"[Original message]({outcome.group.original.url})",
        color=SELF_REPOST_COLOR if self_repost else DUPE_COLOR,
        timestamp=datetime.datetime.now()
    )
    embed.add_field(name="Original poster", value=outcome.group.original.author.username)
    embed.add_field(name="Posted", value=outcome.group.original.upload_date)
    if outcome.distance:
        embed.add_field(name="Hamming distance", value=str(outcome.distance))
    return embed


def tracked_table_id(channel, tracked_channels) -> int | None:
    """
    Id of the hash table a channel's messages are checked against.

    Posts of a tracked forum (and threads of a tracked channel) use the
    parent's table.
    """
    if channel.id in tracked_channels:
        return channel.id
    parent_id = getattr(channel, "parent_id", None)
    if parent_id is not None and parent_id in tracked_channels:
        return parent_id
    return None


class TrackerCog(commands.Cog):
    """Checks new images in tracked channels against the channel's hash table."""

    def __init__(self, bot):
        self.bot = bot
        self.logger = logging.getLogger(self.__class__.__name__)

    def table_for(self, channel_id: int):
        if channel_id not in self.bot.tables:
            self.bot.tables[channel_id] = self.bot.store.load(channel_id, **self.bot.index_options())
        return self.bot.tables[channel_id]

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        table_id = tracked_table_id(message.channel, self.bot.config.tracked_channels)
        if table_id is None:
            return
        if message.content.startswith("!"):
            return
        if not any((attachment.content_type or "").startswith("image/") for attachment in message.attachments):
            return

        self.logger.info(f"Processing new message with images in channel {message.channel.id}")
        index = self.table_for(table_id)
        scanner = IngestionScanner(
            DiscordChannelSource(message.channel, message.guild.me),
            index,
            self.bot.hasher(),
            self.bot.config,
            artifacts=self.bot.artifact_writer(),
        )
        outcomes = await scanner.process_message(convert_message(message))

        for outcome in outcomes:
            if not outcome.is_duplicate:
                continue
            try:
                await message.reply(embed=outcome_embed(outcome), mention_author=False)
            except discord.HTTPException as exc:
                self.logger.error(f"Failed to send duplicate notification for {message.jump_url}: {exc}")

        if outcomes:
            await self.bot.store.save_async(table_id, index)


async def setup(bot):
    await bot.add_cog(TrackerCog(bot))
