import datetime
import logging
import traceback

import discord
from discord.ext import commands

import exception


class ExceptionHandler(commands.Cog):
    """Turns command errors into a short embed. Full detail goes to the log."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def describe(error: commands.CommandError) -> str:
        if isinstance(error, commands.HybridCommandError):
            error = error.original
        if isinstance(error, commands.MissingRequiredArgument):
            return f"Missing argument `{error.param.name}`. Use `/help` to see the command format."
        if isinstance(error, exception.InvalidChannelId):
            return "That is not a valid channel id!"
        if isinstance(error, exception.ChannelNotFound):
            return "Could not find that channel. Check the id and that the bot is in the server."
        if isinstance(error, exception.ScanInProgress):
            return "A scan is already running for that channel. Wait for it to finish or cancel it."
        # commands.CommandInvokeError and app_commands.CommandInvokeError both carry .original
        original = getattr(error, "original", None)
        if isinstance(original, exception.AccessDenied):
            return f"The bot does not have access to that channel!\n{original}"
        if isinstance(original, exception.ReportError):
            return "The scan finished but the report file could not be written."
        if isinstance(original, exception.ScanError):
            return str(original)
        if isinstance(error, commands.BadArgument):
            return "Incorrect argument! Check the command format with `/help`."
        if isinstance(error, commands.CheckFailure):
            return "You aren't allowed to use this command!"
        return "Unknown error occurred while using the command"

    @commands.Cog.listener()
    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.logger.error(f"Error in command {ctx.command}:\n{tb}")
        embed = discord.Embed(
            title=f"Error in command {ctx.command}!",
            description=self.describe(error),
            color=discord.Color.red(),
            timestamp=datetime.datetime.now()
        )
        try:
            await ctx.send(embed=embed)
        except discord.HTTPException as exc:
            self.logger.error(f"Could not report error to {ctx.channel}: {exc}")


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(ExceptionHandler(bot))
