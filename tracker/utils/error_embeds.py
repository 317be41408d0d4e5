"""
Centralized error embeds for consistent error handling across the Discord commands.
"""

import discord

from tracker.utils.exceptions import TrackerException


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    @staticmethod
    def from_exception(error: TrackerException) -> discord.Embed:
        """Create embed showing the user-facing message of a tracker error."""
        return discord.Embed(
            title="Request Failed",
            description=error.user_message,
            color=discord.Color.red()
        )

    @staticmethod
    def invalid_input(message: str) -> discord.Embed:
        """Create embed for invalid user input."""
        return discord.Embed(
            title="Invalid Input",
            description=message,
            color=discord.Color.red()
        )

    @staticmethod
    def command_error(error: str) -> discord.Embed:
        """Create embed for general command errors."""
        return discord.Embed(
            title="Command Error",
            description=f"An error occurred: {error}\n\nPlease try again or contact an administrator.",
            color=discord.Color.red()
        )

    @staticmethod
    def owner_only() -> discord.Embed:
        embed = discord.Embed(
            title="❌ Administrative Privileges Required",
            description="This command is restricted to the bot owner.",
            color=discord.Color.red()
        )
        embed.set_footer(text="Contact the bot owner if you believe you should have access.")
        return embed
