import asyncio
import datetime
import logging

import discord
from discord.ext import commands

import exception
from report import ReportGenerator
from scanner import IngestionScanner, ScanResult
from source import DiscordChannelSource, REQUIRED_PERMISSIONS, missing_permissions
from utils.progress import ScanProgress, format_elapsed, format_status
from view import ScanControlView


class StatusMessage:
    """Status line of a running scan. Edits in place and falls back to a new message if the edit fails."""

    def __init__(self, ctx: commands.Context, view: ScanControlView | None = None):
        self.ctx = ctx
        self.view = view
        self.message: discord.Message | None = None
        self.logger = logging.getLogger(self.__class__.__name__)

    async def update(self, content: str) -> None:
        if self.message is not None:
            try:
                await self.message.edit(content=content)
                return
            except discord.HTTPException as exc:
                self.logger.warning(f"Could not edit status message, sending a new one: {exc}")
        try:
            kwargs = {"view": self.view} if self.view is not None else {}
            self.message = await self.ctx.send(content, **kwargs)
            if self.view is not None:
                self.view.message = self.message
        except discord.HTTPException as exc:
            self.logger.error(f"Could not send status message: {exc}")


class ScanCog(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.logger = logging.getLogger(self.__class__.__name__)

    async def resolve_channel(self, channel_id: str) -> discord.abc.GuildChannel | discord.Thread:
        channel_id = channel_id.strip().lstrip("<#").rstrip(">")
        if not channel_id.isdigit():
            raise(exception.InvalidChannelId(f"{channel_id} is not a channel id"))
        channel = self.bot.get_channel(int(channel_id))
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(int(channel_id))
            except (discord.NotFound, discord.Forbidden, discord.InvalidData):
                raise(exception.ChannelNotFound(f"channel {channel_id} not found"))
        return channel

    @staticmethod
    async def forum_posts(forum: discord.ForumChannel) -> list[discord.Thread]:
        """Every active and archived post of a forum."""
        posts = list(forum.threads)
        seen = {post.id for post in posts}
        async for post in forum.archived_threads(limit=None):
            if post.id not in seen:
                posts.append(post)
                seen.add(post.id)
        return posts

    def make_scanner(self, source, index, status: StatusMessage, cancel_event: asyncio.Event, title: str) -> IngestionScanner:
        async def on_progress(progress: ScanProgress) -> None:
            await status.update(format_status(progress, title))

        return IngestionScanner(
            source,
            index,
            self.bot.hasher(),
            self.bot.config,
            memory=self.bot.memory_monitor(),
            artifacts=self.bot.artifact_writer(),
            on_progress=on_progress,
            cancel_event=cancel_event,
        )

    async def run_scans(self, ctx: commands.Context, channel, index, title: str, count_first: bool = False) -> tuple[list[ScanResult], bool]:
        """Scan a channel, thread or whole forum into ``index``. Returns the results and whether it was cancelled."""
        if channel.id in self.bot.active_scans:
            raise(exception.ScanInProgress(f"channel {channel.id} is already being scanned"))

        if isinstance(channel, discord.ForumChannel):
            missing = missing_permissions(channel, channel.guild.me)
            if missing:
                raise exception.AccessDenied(f"Missing permissions in forum {channel.name}: {', '.join(missing)}")
            posts = await self.forum_posts(channel)
            self.logger.info(f"Found {len(posts)} posts in forum {channel.name}")
            sources = [DiscordChannelSource(post, channel.guild.me) for post in posts]
        elif isinstance(channel, (discord.TextChannel, discord.Thread)):
            sources = [DiscordChannelSource(channel, channel.guild.me)]
        else:
            raise(exception.ChannelNotFound(f"{channel} is not a text channel, thread or forum"))

        cancel_event = asyncio.Event()
        view = ScanControlView(ctx.author, cancel_event)
        status = StatusMessage(ctx, view)
        results: list[ScanResult] = []
        cancelled = False

        self.bot.active_scans.add(channel.id)
        try:
            await status.update(f"Starting {title.lower()} of {channel.name} ({len(sources)} source{'s' if len(sources) != 1 else ''})...")
            for source in sources:
                scanner = self.make_scanner(source, index, status, cancel_event, title)
                if count_first:
                    total = await scanner.count()
                    await status.update(f"{title} {source.location}...\nTotal messages to process: {total:,}")
                try:
                    results.append(await scanner.run())
                except exception.ScanCancelled as exc:
                    self.logger.warning(str(exc))
                    results.append(exc.result)
                    cancelled = True
                    break
        finally:
            self.bot.active_scans.discard(channel.id)
            await view.finish()
        return results, cancelled

    @staticmethod
    def summary_embed(title: str, channel, results: list[ScanResult], index, cancelled: bool) -> discord.Embed:
        messages = sum(result.stats.processed_messages for result in results)
        images = sum(result.stats.processed_images for result in results)
        skipped = sum(result.stats.rejected + result.stats.errors for result in results)
        elapsed = sum(result.elapsed for result in results)
        embed = discord.Embed(
            title=f"{title} {'cancelled' if cancelled else 'complete'}!",
            description=f"Results for {channel.jump_url}" + ("\nPartial results up to the point of cancellation." if cancelled else ""),
            color=discord.Color.orange() if cancelled else discord.Color.green(),
            timestamp=datetime.datetime.now()
        )
        embed.add_field(name="Messages", value=f"{messages:,}")
        embed.add_field(name="Images", value=f"{images:,}")
        embed.add_field(name="Skipped", value=f"{skipped:,}")
        embed.add_field(name="Groups", value=f"{len(index):,}")
        embed.add_field(name="Duplicate groups", value=f"{len(index.duplicate_groups()):,}")
        embed.add_field(name="Duplicates", value=f"{index.duplicate_count:,}")
        embed.add_field(name="Time taken", value=format_elapsed(elapsed), inline=False)
        return embed

    @commands.hybrid_command(name="check")
    async def check(self, ctx: commands.Context, channel_id: str):
        """
        Analyze a channel, thread or forum for duplicate images.

        Parameters
        ----------
        ctx: commands.Context
            The context of the command invocation
        channel_id: str
            Id of the channel to analyze. Forums are analyzed post by post.
        """
        await ctx.defer()
        started = datetime.datetime.now(datetime.timezone.utc)
        channel = await self.resolve_channel(channel_id)
        index = self.bot.new_index()

        results, cancelled = await self.run_scans(ctx, channel, index, "Analysis", count_first=True)

        generator = ReportGenerator(self.bot.config, channel.id, started)
        group_report = await asyncio.to_thread(generator.write_group_report, index)
        author_report = await asyncio.to_thread(generator.write_author_report, index)

        embed = self.summary_embed("Analysis", channel, results, index, cancelled)
        await ctx.send(
            embed=embed,
            files=[discord.File(group_report, filename=group_report.name), discord.File(author_report, filename=author_report.name)],
        )

    @commands.hybrid_command(name="hash")
    async def hash(self, ctx: commands.Context, channel_id: str):
        """
        Build the hash table of a channel's history and start tracking it for reposts.

        Parameters
        ----------
        ctx: commands.Context
            The context of the command invocation
        channel_id: str
            Id of the channel to hash.
        """
        await ctx.defer()
        channel = await self.resolve_channel(channel_id)
        index = self.bot.new_index()

        results, cancelled = await self.run_scans(ctx, channel, index, "Hashing", count_first=True)

        saved = await self.bot.store.save_async(channel.id, index)
        self.bot.tables[channel.id] = index
        self.bot.config.tracked_channels.add(channel.id)

        embed = self.summary_embed("Hash table build", channel, results, index, cancelled)
        embed.add_field(
            name="Hash table",
            value=f"Saved to `{self.bot.store.path_for(channel.id)}`" if saved else "Could not be saved, check the log",
            inline=False,
        )
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="checkperms")
    async def checkperms(self, ctx: commands.Context, channel_id: str):
        """
        Show whether the bot has the permissions it needs in a channel.

        Parameters
        ----------
        ctx: commands.Context
            The context of the command invocation
        channel_id: str
            Id of the channel to check.
        """
        channel = await self.resolve_channel(channel_id)
        missing = missing_permissions(channel, channel.guild.me)
        status = "\n".join(f"{perm}: {'❌' if perm in missing else '✅'}" for perm in REQUIRED_PERMISSIONS)
        embed = discord.Embed(
            title=f"Bot permissions in {channel.name}",
            description=status,
            color=discord.Color.red() if missing else discord.Color.green(),
        )
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="help")
    async def help(self, ctx: commands.Context):
        """
        Information about how to use the bot's commands.
        """
        embed = discord.Embed(title="Image Repost Analyzer",
                              description="Commands work with both `!` and slash commands.",
                              color=discord.Color.yellow())
        embed.add_field(name="/check {channel_id}", value=("Analyze a channel, thread or forum for duplicate images."
                        "\nSends a duplicate report and an author report as CSV files."), inline=False)
        embed.add_field(name="/hash {channel_id}", value=("Build the hash table for previous messages in a channel."
                        "\nNew images posted there afterwards are checked against it."), inline=False)
        embed.add_field(name="/checkperms {channel_id}", value="Check the bot's permissions in a channel.", inline=False)
        embed.add_field(name="/help", value="Show this message.", inline=False)
        embed.add_field(name="Cancelling", value=("Press Cancel under the status message to stop a running scan."
                        "\nThe report will cover everything processed until then."), inline=False)
        await ctx.send(embed=embed)


async def setup(bot):
    await bot.add_cog(ScanCog(bot))
