from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Sequence
from zoneinfo import ZoneInfo

import discord

from .config import Settings
from .history import ModerationRecord
from .invites import ResolvedInvite

DATE_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


class Notices:
    """Builds the warning embeds shown in moderated channels."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.tz: tzinfo = timezone.utc if settings.display_timezone.upper() == "UTC" else ZoneInfo(settings.display_timezone)

    def _title(self, text: str) -> str:
        emoji = self.settings.alert_emoji
        return f"{emoji} {text} {emoji}" if emoji else text

    def format_time(self, when: datetime | int | float) -> str:
        if not isinstance(when, datetime):
            when = datetime.fromtimestamp(when, tz=timezone.utc)
        return when.astimezone(self.tz).strftime(DATE_FORMAT)

    def no_invite(self) -> discord.Embed:
        return discord.Embed(
            title=self._title("Only server advertisements are allowed"),
            description=(
                "This channel is for advertising Discord servers.\n"
                "Your message needs at least one Discord invite link."
            ),
            color=discord.Color.orange(),
        )

    def invalid_invites(self, invites: Sequence[ResolvedInvite]) -> discord.Embed:
        embed = discord.Embed(
            title=self._title("Invalid invite link"),
            description="Only working invite links can be advertised.",
            color=discord.Color.red(),
        )
        for invite in invites[:25]:
            embed.add_field(name="Invite link", value=f"`{invite.raw_span}`", inline=False)
        return embed

    def description_too_short(self) -> discord.Embed:
        return discord.Embed(
            title=self._title("Description too short"),
            description=(
                f"Please write at least {self.settings.min_description_length} characters "
                "besides the invite link.\nTell people what your server is about!"
            ),
            color=discord.Color.orange(),
        )

    def expiring_invites(self, invites: Sequence[ResolvedInvite]) -> discord.Embed:
        embed = discord.Embed(
            title=self._title("Invite link expires"),
            description="Only invite links that never expire can be advertised.",
            color=discord.Color.red(),
        )
        for invite in invites[:25]:
            if invite.expires_at is None:
                continue
            embed.add_field(
                name=f"`{invite.code}` expires at",
                value=self.format_time(invite.expires_at),
                inline=False,
            )
        return embed

    def recently_advertised(self, live: Sequence[ModerationRecord]) -> discord.Embed:
        embed = self._recent_base()
        links = "\n".join(f"[Message link]({record.jump_url})" for record in live[:10])
        embed.add_field(name="Previously advertised in", value=links, inline=False)
        return embed

    def recently_advertised_removed(self, record: ModerationRecord, author_id: int, now: float) -> discord.Embed:
        embed = self._recent_base()
        period = self.settings.ban_period
        days_ago = int((now - record.timestamp) // 86400)
        if record.author_id == author_id:
            name = f"You advertised this server within the last {period.self_window_days} days"
        else:
            name = f"This server was advertised within the last {period.others_window_days} days"
        embed.add_field(
            name=name,
            value=f"Advertised {self.format_time(record.timestamp)} ({days_ago} days ago)",
            inline=False,
        )
        return embed

    def _recent_base(self) -> discord.Embed:
        period = self.settings.ban_period
        return discord.Embed(
            title=self._title("This server was advertised recently"),
            description=(
                f"Servers advertised by someone else in the last {period.others_window_days} days, "
                f"or by you in the last {period.self_window_days} days, cannot be advertised again.\n"
                f"You may repost your own advertisement within {period.self_repost_grace_minutes} minutes."
            ),
            color=discord.Color.red(),
        )

    def history_listing(self, member: discord.abc.User, records: Sequence[ModerationRecord]) -> discord.Embed:
        embed = discord.Embed(
            title=f"Advertisement history of {member}",
            color=discord.Color.blurple(),
        )
        if not records:
            embed.description = "No advertisements on record."
            return embed
        lines = []
        for record in records[:20]:
            state = " (removed)" if record.soft_deleted else f" [link]({record.jump_url})"
            lines.append(f"`{record.invite_code}` · server `{record.owner_guild_id}` · {self.format_time(record.timestamp)}{state}")
        embed.description = "\n".join(lines)
        if len(records) > 20:
            embed.set_footer(text=f"{len(records) - 20} older entries not shown")
        return embed
