from __future__ import annotations

import asyncio
import logging
import typing

import discord


def error_notice(error: Exception) -> str:
    """One line for the user. The traceback only goes to the log."""
    return f"Something went wrong with this button ({error.__class__.__name__}). The details were logged."


class BaseView(discord.ui.View):
    interaction: discord.Interaction | None = None
    message: discord.Message | None = None

    def __init__(self, user: discord.User | discord.Member, timeout: float | None = 60.0):
        super().__init__(timeout=timeout)
        # Only the user who started the command may press the buttons
        self.user = user

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.user.id:
            await interaction.response.send_message(
                "You cannot interact with this view.", ephemeral=True
            )
            return False
        self.interaction = interaction
        return True

    def _disable_all(self) -> None:
        for item in self.children:
            if isinstance(item, discord.ui.Button):
                item.disabled = True

    # Either the view was never touched (edit the message) or we have the last interaction to respond through
    async def _edit(self, **kwargs: typing.Any) -> None:
        if self.interaction is None and self.message is not None:
            await self.message.edit(**kwargs)
        elif self.interaction is not None:
            try:
                await self.interaction.response.edit_message(**kwargs)
            except discord.InteractionResponded:
                await self.interaction.edit_original_response(**kwargs)

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[BaseView]) -> None:
        logging.getLogger(self.__class__.__name__).error(
            f"Error in {item} of {self.__class__.__name__}", exc_info=(type(error), error, error.__traceback__)
        )
        self._disable_all()
        await self._edit(content=error_notice(error), view=self)
        self.stop()

    async def on_timeout(self) -> None:
        self._disable_all()
        await self._edit(view=self)


class ScanControlView(BaseView):
    """Attached to a scan's status message. Cancel stops the scan at the next batch."""

    def __init__(self, user: discord.User | discord.Member, cancel_event: asyncio.Event, timeout: float | None = None):
        super().__init__(user=user, timeout=timeout)
        self.cancel_event = cancel_event

    async def finish(self) -> None:
        """Grey out the button once the scan is over."""
        self._disable_all()
        self.stop()
        if self.message is not None:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                pass

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.danger, emoji="❌", custom_id="scan_cancel")
    async def cancel_button(self, interaction: discord.Interaction, button: discord.ui.Button[ScanControlView]) -> None:
        self.cancel_event.set()
        button.label = "Cancelling..."
        self._disable_all()
        await interaction.response.edit_message(view=self)
        self.stop()
