"""
Sync Cog - Background Sync Cycle & Sync Commands

Runs the periodic sync cycle and the daily snapshot purge, and exposes the
on-demand sync commands.
"""

import json
from datetime import datetime, timezone
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from tracker.config import Config
from tracker.database.models import Platform
from tracker.services.lease import cooldown
from tracker.utils.error_embeds import ErrorEmbeds
from tracker.utils.exceptions import StorageUnavailableError, UserNotFoundError
from tracker.utils.logger import setup_logger

logger = setup_logger(__name__)

PLATFORM_CHOICES = [app_commands.Choice(name=p.value, value=p.value) for p in Platform]


class SyncCog(commands.Cog):
    """Background sync tasks and sync commands"""

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

    async def cog_load(self):
        self.sync_cycle.change_interval(hours=Config.SYNC_INTERVAL_HOURS)
        self.sync_cycle.start()
        self.purge_history.start()
        self.logger.info("SyncCog: Background tasks started")

    async def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.sync_cycle.cancel()
        self.purge_history.cancel()
        self.logger.info("SyncCog: Background tasks stopped")

    @tasks.loop(hours=6)
    async def sync_cycle(self):
        """Sync all stale accounts"""
        try:
            summary = await self.bot.orchestrator.run_sync_cycle()
        except StorageUnavailableError as e:
            self.logger.error(f"Sync cycle aborted: {e}")
            return

        if summary.success:
            await self.bot.leaderboard_service.clear_cache()

    @sync_cycle.before_loop
    async def before_sync_cycle(self):
        await self.bot.wait_until_ready()

    @tasks.loop(hours=24)
    async def purge_history(self):
        """Delete daily snapshots past the retention horizon"""
        retention_days = self.bot.config_service.get('history.retention_days', Config.HISTORY_RETENTION_DAYS)
        try:
            await self.bot.history.purge_expired(retention_days)
        except StorageUnavailableError as e:
            self.logger.error(f"History purge failed: {e}")

    @purge_history.before_loop
    async def before_purge_history(self):
        await self.bot.wait_until_ready()

    async def _require_user(self, interaction: discord.Interaction):
        user = await self.bot.db.get_user_by_discord_id(interaction.user.id)
        if user is None:
            raise UserNotFoundError(interaction.user.id)
        return user

    @app_commands.command(name="sync-me", description="Refresh your platform stats now")
    @app_commands.describe(platform="Only sync this platform")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    @cooldown("sync-me")
    async def sync_me(self, interaction: discord.Interaction, platform: Optional[app_commands.Choice[str]] = None):
        user = await self._require_user(interaction)
        await interaction.response.defer(ephemeral=True)

        embed = discord.Embed(title="🔄 Sync Results", color=discord.Color.blue())
        if platform:
            account = await self.bot.orchestrator.sync_account(user.id, platform.value)
            embed.add_field(
                name=platform.value,
                value=f"✅ {account.total_problems_solved} problems, rating {account.contest_rating:.0f}",
                inline=False
            )
        else:
            results = await self.bot.orchestrator.sync_user(user.id)
            for result in results:
                if result.status == 'success':
                    value = "✅ Synced"
                elif result.status == 'skipped':
                    value = "⏳ Already syncing"
                else:
                    value = f"❌ {result.error}"
                embed.add_field(name=result.platform, value=value, inline=False)

        await self.bot.leaderboard_service.clear_cache()
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="resync", description="Queue a platform for the next sync cycle")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def resync(self, interaction: discord.Interaction, platform: app_commands.Choice[str]):
        user = await self._require_user(interaction)
        await self.bot.orchestrator.request_resync(user.id, platform.value)
        await interaction.response.send_message(
            f"✅ Your {platform.value} account will be refreshed in the next sync cycle.",
            ephemeral=True
        )

    @app_commands.command(name="admin-sync-now", description="Run a sync cycle immediately (Owner only)")
    async def admin_sync_now(self, interaction: discord.Interaction):
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(embed=ErrorEmbeds.owner_only(), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        summary = await self.bot.orchestrator.run_sync_cycle()
        await self.bot.leaderboard_service.clear_cache()

        embed = discord.Embed(
            title="✅ Sync Cycle Complete",
            color=discord.Color.green(),
            timestamp=datetime.now(timezone.utc)
        )
        embed.add_field(name="Total", value=str(summary.total))
        embed.add_field(name="Success", value=str(summary.success))
        embed.add_field(name="Errors", value=str(summary.error))
        embed.add_field(name="Skipped", value=str(summary.skipped))
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="admin-config-set", description="Set a runtime setting (Owner only)")
    @app_commands.describe(key="Setting key, e.g. sync.batch_size", value="JSON value")
    async def admin_config_set(self, interaction: discord.Interaction, key: str, value: str):
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(embed=ErrorEmbeds.owner_only(), ephemeral=True)
            return

        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            await interaction.response.send_message(
                embed=ErrorEmbeds.invalid_input(f"`{value}` is not valid JSON."), ephemeral=True
            )
            return

        await self.bot.config_service.set(key, parsed, interaction.user.id)
        await interaction.response.send_message(f"✅ `{key}` set to `{value}`", ephemeral=True)


async def setup(bot):
    await bot.add_cog(SyncCog(bot))
