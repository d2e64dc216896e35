from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

import aiosqlite
import discord
from discord.ext import commands

log = logging.getLogger(__name__)


class Promotion(commands.Cog):
    """Watches the advertisement channels."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.settings = bot.settings  # type: ignore[attr-defined]
        self.store = bot.store  # type: ignore[attr-defined]
        self.pipeline = bot.pipeline  # type: ignore[attr-defined]
        self.enforcer = bot.enforcer  # type: ignore[attr-defined]
        self._locks: dict[int, list] = {}

    def is_moderated(self, channel_id: int) -> bool:
        return channel_id in self.settings.promo_channel_ids

    def is_exempt(self, author: discord.abc.User) -> bool:
        if not isinstance(author, discord.Member):
            return False
        return any(role.id in self.settings.exempt_role_ids for role in author.roles)

    @asynccontextmanager
    async def _serialized(self, message_id: int) -> AsyncIterator[None]:
        # [lock, users]; dropped once nobody waits on it
        entry = self._locks.setdefault(message_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(message_id, None)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        await self.handle_message(message)

    async def handle_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        if not self.is_moderated(message.channel.id):
            return
        if self.is_exempt(message.author):
            return

        async with self._serialized(message.id):
            try:
                embeds = await self.pipeline.run(message)
            except aiosqlite.Error:
                log.exception("History store failed while checking message %s", message.id)
                return
            except discord.HTTPException:
                log.exception("Discord request failed while checking message %s", message.id)
                return
            if not embeds:
                return
            try:
                reply = await message.reply(embeds=embeds, mention_author=True)
            except discord.HTTPException:
                log.exception("Failed to send warning for message %s", message.id)
                return

        log.info("Warned %s in #%s (message %s)", message.author.id, message.channel.id, message.id)
        await self.enforcer.enforce(message, reply)

    @commands.Cog.listener()
    async def on_raw_message_edit(self, payload: discord.RawMessageUpdateEvent):
        if not self.is_moderated(payload.channel_id):
            return
        cached = payload.cached_message
        new_content = payload.data.get("content")
        # link previews arrive as edits too
        if cached is not None and new_content is not None and cached.content == new_content:
            return
        try:
            channel = self.bot.get_channel(payload.channel_id) or await self.bot.fetch_channel(payload.channel_id)
            message = await channel.fetch_message(payload.message_id)  # type: ignore[union-attr]
        except discord.HTTPException:
            log.warning("Could not fetch edited message %s", payload.message_id, exc_info=True)
            return
        await self.handle_message(message)

    @commands.Cog.listener()
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent):
        if self.is_moderated(payload.channel_id):
            await self.forget([payload.message_id])

    @commands.Cog.listener()
    async def on_raw_bulk_message_delete(self, payload: discord.RawBulkMessageDeleteEvent):
        if self.is_moderated(payload.channel_id):
            await self.forget(payload.message_ids)

    async def forget(self, message_ids: Iterable[int]) -> None:
        for message_id in message_ids:
            try:
                await self.store.delete(message_id)
            except aiosqlite.Error:
                log.exception("Failed to update history for deleted message %s", message_id)

    @commands.hybrid_command(name="ad-history", description="Show a member's advertisement history")
    @commands.guild_only()
    async def ad_history(self, ctx: commands.Context, member: discord.Member):
        try:
            records = await self.store.records_by_author(ctx.guild.id, member.id, include_deleted=True)
        except aiosqlite.Error:
            log.exception("Failed to read history of %s", member.id)
            await ctx.reply("❌ Could not read the advertisement history", ephemeral=True)
            return
        await ctx.reply(embed=self.pipeline.notices.history_listing(member, records), ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(Promotion(bot))
