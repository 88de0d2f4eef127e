import os
import sys
import traceback

import discord
from discord import app_commands
from discord.ext import commands

from .services.web_server import StorefrontServer
from .utils.constants import Emojis
from .utils.logger import logger


class StorefrontBot(commands.Bot):
    def __init__(self):
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=discord.Intents.default(),
            help_command=None,
            activity=discord.Activity(type=discord.ActivityType.watching, name="Top-up orders"),
        )
        self.storefront = StorefrontServer(bot=self)
        self.commands_synced = False
        self.tree.on_error = self.on_app_command_error

    async def setup_hook(self):
        logger.info(f"{Emojis.STORE}  Initializing top-up storefront...")

        # Storage and the outbox recovery sweep run in the server's startup hook.
        try:
            await self.storefront.start()
            logger.info(f"{Emojis.SUCCESS} Storefront API started.")
        except Exception as e:
            logger.critical(f"{Emojis.ERROR} Storefront API failed to start: {e}")
            sys.exit(1)

        await self.load_extensions()

    async def load_extensions(self):
        commands_dir = os.path.join(os.path.dirname(__file__), "commands")
        if not os.path.exists(commands_dir):
            return
        for filename in sorted(os.listdir(commands_dir)):
            if filename.endswith(".py") and not filename.startswith("_"):
                extension_name = f"{__package__}.commands.{filename[:-3]}"
                try:
                    await self.load_extension(extension_name)
                    logger.info(f"Loaded extension: {extension_name}")
                except Exception as e:
                    logger.error(f"{Emojis.ERROR} Failed to load extension {extension_name}: {e}\n{traceback.format_exc()}")

    async def on_ready(self):
        logger.info(f"{Emojis.ROCKET}  {self.user} is online and ready!")
        if self.commands_synced:
            return
        try:
            synced = await self.tree.sync()
            logger.info(f"{Emojis.INFO} Synced {len(synced)} application commands globally.")
            self.commands_synced = True
        except discord.HTTPException as e:
            logger.error(f"{Emojis.ERROR} Global command sync failed: {e}")

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        original = getattr(error, "original", error)
        logger.error(f"App command error: {original}")

        message = f"{Emojis.ERROR} Command failed: {original}"
        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException:
            logger.warning("Could not report command failure to the user.")

    async def close(self):
        await self.storefront.stop()
        await super().close()
