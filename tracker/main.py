import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from tracker.config import Config
from tracker.database.database import Database
from tracker.database.models import Platform
from tracker.services.configuration import ConfigurationService
from tracker.services.fetcher import PlatformFetcherRegistry
from tracker.services.history_recorder import HistoryRecorder
from tracker.services.leaderboard import LeaderboardService
from tracker.services.lease import create_lease_store
from tracker.services.stats import StatsService
from tracker.services.sync_orchestrator import SyncOrchestrator
from tracker.utils.error_embeds import ErrorEmbeds
from tracker.utils.exceptions import TrackerException
from tracker.utils.logger import setup_logger

class StatsBot(commands.Bot):
    def __init__(self, fetchers: Optional[PlatformFetcherRegistry] = None):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        # Platform clients are registered on this registry before start()
        self.fetchers = fetchers or PlatformFetcherRegistry(timeout=Config.FETCH_TIMEOUT_SECONDS)
        self.db: Optional[Database] = None
        self.config_service: Optional[ConfigurationService] = None
        self.lease_store = None
        self.history: Optional[HistoryRecorder] = None
        self.orchestrator: Optional[SyncOrchestrator] = None
        self.leaderboard_service: Optional[LeaderboardService] = None
        self.stats_service: Optional[StatsService] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Stats Tracker...")

        self.db = Database()
        await self.db.initialize()

        # Seed missing runtime settings, then load them
        self.config_service = ConfigurationService(self.db.session_factory)
        await self.config_service.seed_defaults()
        await self.config_service.load_all()
        self.logger.info("Configuration service initialized")

        missing = [p.value for p in Platform if not self.fetchers.supports(p)]
        if missing:
            self.logger.warning(f"No fetcher registered for: {', '.join(missing)}; those accounts will fail to sync")

        self.lease_store = await create_lease_store()
        self.history = HistoryRecorder(self.db)
        self.orchestrator = SyncOrchestrator(
            self.db,
            self.fetchers,
            history=self.history,
            lease_store=self.lease_store,
            config_service=self.config_service
        )
        self.leaderboard_service = LeaderboardService(self.db.session_factory)
        self.stats_service = StatsService(self.db.session_factory)

        await self.load_cogs()
        await self._sync_commands()

        self.logger.info("Stats Tracker setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'tracker.cogs.sync',
            'tracker.cogs.stats',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except commands.ExtensionError as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        guild_ids = Config.get_guild_ids()
        try:
            if guild_ids:
                for guild_id in guild_ids:
                    guild = discord.Object(id=guild_id)
                    self.tree.copy_global_to(guild=guild)
                    synced = await self.tree.sync(guild=guild)
                    self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")
            else:
                # Global sync can take up to an hour to propagate
                synced = await self.tree.sync()
                self.logger.info(f"Synced {len(synced)} command(s) globally")
        except discord.HTTPException as e:
            # The bot keeps working with previously synced commands
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Stats Tracker | /leaderboard")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        original = getattr(error, 'original', error)

        if isinstance(original, TrackerException):
            self.logger.info(f"Command '{command_name}' by {interaction.user} failed: {original}")
            error_embed = ErrorEmbeds.from_exception(original)
        elif isinstance(original, ValueError):
            self.logger.info(f"Command '{command_name}' by {interaction.user} rejected: {original}")
            error_embed = ErrorEmbeds.invalid_input(str(original))
        elif isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            error_embed = ErrorEmbeds.owner_only()
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)
            error_embed = ErrorEmbeds.command_error("unexpected error")

        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Stats Tracker...")

        if self.lease_store:
            await self.lease_store.close()

        if self.db:
            await self.db.close()

        await super().close()

async def main():
    """Main entry point"""
    Config.validate()

    bot = StatsBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
        raise
    finally:
        await bot.close()

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
