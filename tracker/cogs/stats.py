"""
Stats Cog - Account Linking, Profiles & Leaderboards
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from tracker.constants import UIConstants
from tracker.database.models import Platform
from tracker.utils.exceptions import UserNotFoundError
from tracker.utils.logger import setup_logger
from tracker.utils.ranking import OverallMetric, PlatformMetric

logger = setup_logger(__name__)

PLATFORM_CHOICES = [app_commands.Choice(name=p.value, value=p.value) for p in Platform]
METRIC_CHOICES = [
    app_commands.Choice(name=m.value, value=m.value)
    for m in list(OverallMetric) + list(PlatformMetric)
]


class StatsCog(commands.Cog):
    """Platform accounts, stats views and leaderboards"""

    def __init__(self, bot):
        self.bot = bot

    async def _require_user(self, member: discord.abc.User):
        user = await self.bot.db.get_user_by_discord_id(member.id)
        if user is None:
            raise UserNotFoundError(member.id)
        return user

    @app_commands.command(name="link", description="Link a competitive programming account")
    @app_commands.describe(platform="Platform", username="Your username on that platform")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def link(self, interaction: discord.Interaction, platform: app_commands.Choice[str], username: str):
        user = await self.bot.db.get_user_by_discord_id(interaction.user.id)
        if user is None:
            user = await self.bot.db.create_user(
                username=interaction.user.name,
                display_name=interaction.user.display_name,
                discord_id=interaction.user.id
            )
            logger.info(f"Registered user {user.id} for {interaction.user}")

        account = await self.bot.db.link_account(user.id, platform.value, username)
        await self.bot.leaderboard_service.clear_cache()
        await interaction.response.send_message(
            f"✅ Linked **{account.platform_username}** on {platform.value}. "
            f"Stats will appear after the next sync, or run `/sync-me`.",
            ephemeral=True
        )

    @app_commands.command(name="unlink", description="Unlink a platform account")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def unlink(self, interaction: discord.Interaction, platform: app_commands.Choice[str]):
        user = await self._require_user(interaction.user)
        await self.bot.db.deactivate_account(user.id, platform.value)
        await self.bot.leaderboard_service.clear_cache()
        await interaction.response.send_message(f"✅ Unlinked your {platform.value} account.", ephemeral=True)

    @app_commands.command(name="visibility", description="Show or hide yourself on public leaderboards")
    async def visibility(self, interaction: discord.Interaction, public: bool):
        user = await self._require_user(interaction.user)
        await self.bot.db.set_user_visibility(user.id, public)
        await self.bot.leaderboard_service.clear_cache()
        state = "visible on" if public else "hidden from"
        await interaction.response.send_message(f"✅ You are now {state} public leaderboards.", ephemeral=True)

    @app_commands.command(name="stats", description="Show stats across your platforms")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def stats(self, interaction: discord.Interaction, member: Optional[discord.Member] = None,
                    platform: Optional[app_commands.Choice[str]] = None):
        target = member or interaction.user
        user = await self._require_user(target)
        viewer = await self.bot.db.get_user_by_discord_id(interaction.user.id)
        stats = await self.bot.stats_service.get_visible_user_stats(
            user.id, viewer.id if viewer else None, platform.value if platform else None
        )
        if stats is None:
            await interaction.response.send_message("🔒 This profile is private.", ephemeral=True)
            return

        embed = discord.Embed(
            title=f"{UIConstants.CHART_EMOJI} {user.display_name or user.username}",
            color=UIConstants.DEFAULT_EMBED_COLOR
        )
        embed.add_field(name="Composite Score", value=str(stats.composite_score))
        embed.add_field(
            name="Problems",
            value=f"{stats.total_problems_solved} "
                  f"({stats.easy_problems_solved}/{stats.medium_problems_solved}/{stats.hard_problems_solved})"
        )
        embed.add_field(name="Avg Rating", value=str(stats.average_contest_rating))
        embed.add_field(name="Contests", value=str(stats.total_contests_participated))
        embed.add_field(name="Max Streak", value=str(stats.max_streak))
        embed.add_field(name="Acceptance", value=f"{stats.acceptance_rate}%")

        for name, breakdown in stats.platform_breakdown.items():
            value = f"{breakdown.problems} problems, rating {breakdown.rating:.0f} ({breakdown.sync_status})"
            if breakdown.sync_status == 'error' and breakdown.last_error:
                value += f"\nLast error: {breakdown.last_error['message']}"
            embed.add_field(name=name, value=value, inline=False)
        if stats.last_synced_at:
            embed.set_footer(text=f"Last synced {stats.last_synced_at:%Y-%m-%d %H:%M} UTC")

        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="leaderboard", description="Show the leaderboard")
    @app_commands.describe(
        platform="Rank a single platform instead of overall",
        metric="Ranking category",
        limit="Number of entries (1-100)"
    )
    @app_commands.choices(platform=PLATFORM_CHOICES, metric=METRIC_CHOICES)
    async def leaderboard(self, interaction: discord.Interaction,
                          platform: Optional[app_commands.Choice[str]] = None,
                          metric: Optional[app_commands.Choice[str]] = None,
                          limit: app_commands.Range[int, 1, 100] = 10):
        viewer = await self.bot.db.get_user_by_discord_id(interaction.user.id)
        viewer_id = viewer.id if viewer else None

        if platform:
            page = await self.bot.leaderboard_service.get_platform_page(
                platform.value, metric.value if metric else PlatformMetric.PROBLEMS, limit, viewer_id
            )
        else:
            page = await self.bot.leaderboard_service.get_overall_page(
                metric.value if metric else OverallMetric.COMPOSITE_SCORE, limit, viewer_id
            )

        lines = []
        for entry in page.entries:
            name = entry.platform_username or entry.display_name
            lines.append(f"**{entry.position}.** {name} - {entry.value:g}")

        embed = discord.Embed(
            title=f"{UIConstants.TROPHY_EMOJI} {page.platform.title()} Leaderboard ({page.metric})",
            description="\n".join(lines) or "No ranked users yet.",
            color=UIConstants.GOLD_RANK_COLOR
        )
        footer = f"{page.total} ranked"
        if page.viewer_position:
            footer += f" | You: #{page.viewer_position}"
        embed.set_footer(text=footer)
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="rank", description="Show your leaderboard position")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def rank(self, interaction: discord.Interaction, platform: Optional[app_commands.Choice[str]] = None):
        user = await self._require_user(interaction.user)
        if platform:
            position = await self.bot.leaderboard_service.get_account_position(user.id, platform.value)
        else:
            position = await self.bot.leaderboard_service.get_user_position(user.id)

        if position is None:
            await interaction.response.send_message(
                "You are not ranked yet. Link an account and make sure your profile is public.",
                ephemeral=True
            )
            return

        await interaction.response.send_message(
            f"#{position.position} of {position.total} on {position.platform} ({position.metric}), "
            f"percentile {position.percentile}",
            ephemeral=True
        )

    @app_commands.command(name="growth", description="Show your weekly and monthly progress")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def growth(self, interaction: discord.Interaction, platform: Optional[app_commands.Choice[str]] = None):
        user = await self._require_user(interaction.user)
        report = await self.bot.history.growth(user.id, platform.value if platform else None)

        embed = discord.Embed(
            title=f"{UIConstants.CHART_EMOJI} Growth ({report.platform})",
            color=UIConstants.SUCCESS_COLOR
        )
        for label, window in (("Last 7 days", report.weekly), ("Last 30 days", report.monthly)):
            value = f"+{window.problems} problems, {window.rating:+.0f} rating, +{window.contests} contests"
            if not window.has_baseline:
                value += "\n(not enough history yet)"
            embed.add_field(name=label, value=value, inline=False)
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="progress", description="Show your weekly progress summary")
    @app_commands.describe(weeks="Number of weeks (1-52)")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def progress(self, interaction: discord.Interaction, platform: Optional[app_commands.Choice[str]] = None,
                       weeks: app_commands.Range[int, 1, 52] = 8):
        user = await self._require_user(interaction.user)
        summaries = await self.bot.history.weekly_summary(user.id, platform.value if platform else None, weeks)

        lines = [
            f"**{s.year}-W{s.week:02d}** problems avg {s.avg_problems:.0f} / max {s.max_problems}, "
            f"rating avg {s.avg_rating:.0f} / max {s.max_rating:.0f}"
            for s in summaries
        ]
        embed = discord.Embed(
            title=f"{UIConstants.CHART_EMOJI} Weekly Progress ({platform.value if platform else 'overall'})",
            description="\n".join(lines) or "No snapshots recorded yet.",
            color=UIConstants.SUCCESS_COLOR
        )
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="top", description="Show the top performers in every category")
    async def top(self, interaction: discord.Interaction):
        performers = await self.bot.leaderboard_service.get_top_performers()
        embed = discord.Embed(title=f"{UIConstants.TROPHY_EMOJI} Top Performers", color=UIConstants.GOLD_RANK_COLOR)
        for metric, entries in performers.items():
            value = "\n".join(f"{e.position}. {e.display_name} - {e.value:g}" for e in entries)
            embed.add_field(name=metric.replace('_', ' ').title(), value=value or "No ranked users yet.", inline=False)
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="global-stats", description="Show tracker-wide statistics")
    async def global_stats(self, interaction: discord.Interaction):
        stats = await self.bot.leaderboard_service.get_global_stats()
        embed = discord.Embed(title="🌐 Global Stats", color=UIConstants.DEFAULT_EMBED_COLOR)
        embed.add_field(name="Users", value=str(stats.total_users))
        embed.add_field(name="Accounts", value=str(stats.total_accounts))
        embed.add_field(name="Problems Solved", value=str(stats.total_problems_global))
        embed.add_field(name="Top Score", value=str(stats.max_composite_score))
        distribution = "\n".join(f"{name}: {count}" for name, count in stats.platform_distribution.items() if count)
        embed.add_field(name="Platforms", value=distribution or "None", inline=False)
        await interaction.response.send_message(embed=embed)


async def setup(bot):
    await bot.add_cog(StatsCog(bot))
