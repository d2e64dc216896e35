from __future__ import annotations

import asyncio
import logging

import discord
from discord import app_commands
from discord.ext import commands

from .config import Settings, load_settings
from .enforcement import WarningEnforcer
from .history import HistoryStore
from .invites import InviteResolver
from .notices import Notices
from .pipeline import AdvertisementPipeline
from .utils.db import Database
from .utils.logging_setup import setup_logging

log = logging.getLogger(__name__)


def is_privileged(user: discord.abc.User, settings: Settings) -> bool:
    if user.id in set(settings.owner_ids):
        return True
    return isinstance(user, discord.Member) and user.guild_permissions.administrator


class RestrictedCommandTree(app_commands.CommandTree):
    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        settings = getattr(interaction.client, "settings", None)
        if settings is not None and is_privileged(interaction.user, settings):
            return True
        raise app_commands.CheckFailure("Only the bot owner or administrators can use this command")


class PromoGuardBot(commands.Bot):
    def __init__(self, *, intents: discord.Intents, db: Database, settings: Settings):
        super().__init__(
            command_prefix=commands.when_mentioned_or(settings.prefix),
            intents=intents,
            tree_cls=RestrictedCommandTree,
        )
        self.db = db
        self.settings = settings
        self.store = HistoryStore(db, settings.ban_period)
        self.resolver = InviteResolver(settings.invite_api_base)
        self.pipeline = AdvertisementPipeline(self.store, self.resolver, settings, Notices(settings))
        self.enforcer = WarningEnforcer(settings.warning_delay_seconds)

    async def setup_hook(self) -> None:
        await self.db.connect()
        await self.db.init_schema()
        purged = await self.store.purge_expired()
        if purged:
            log.info("Purged %d expired history records", purged)

        async def predicate(ctx: commands.Context) -> bool:
            if is_privileged(ctx.author, self.settings):
                return True
            raise commands.CheckFailure("Only the bot owner or administrators can use this command")

        self.check(predicate)

        try:
            await self.load_extension("promoguard.cogs.promotion")
        except Exception:
            log.exception("Failed to load extension promoguard.cogs.promotion")
            raise
        try:
            await self.tree.sync()
            log.info("Slash commands synced")
        except discord.HTTPException:
            log.exception("Failed to sync application commands")

        if not self.settings.promo_channel_ids:
            log.warning("PROMO_CHANNEL_IDS is empty, no channel will be moderated")

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s), watching %d channels", self.user, getattr(self.user, "id", "?"), len(self.settings.promo_channel_ids))

    async def close(self) -> None:
        await super().close()
        await self.resolver.close()
        await self.db.close()


async def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_file)

    intents = discord.Intents.default()
    intents.message_content = True
    intents.members = True
    intents.guilds = True
    intents.presences = False

    db = Database(settings.db_path)
    bot = PromoGuardBot(intents=intents, db=db, settings=settings)

    async with bot:
        await bot.start(settings.token)


if __name__ == "__main__":
    asyncio.run(main())
