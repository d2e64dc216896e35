from __future__ import annotations

import asyncio
import logging

import discord

log = logging.getLogger(__name__)


class WarningEnforcer:
    """Removes a warning and the message it answers after a fixed delay."""

    def __init__(self, delay_seconds: float):
        self.delay_seconds = delay_seconds

    async def enforce(self, original: discord.Message, reply: discord.Message) -> None:
        await asyncio.sleep(self.delay_seconds)
        await self._delete(reply, "warning")
        await self._delete(original, "advertisement")

    async def _delete(self, message: discord.Message, what: str) -> None:
        try:
            await message.delete()
        except discord.NotFound:
            log.debug("%s message %s was already deleted", what.capitalize(), message.id)
        except discord.HTTPException:
            log.warning("Failed to delete %s message %s", what, message.id, exc_info=True)
