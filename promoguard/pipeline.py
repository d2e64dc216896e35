"""Ordered validation of advertisement messages.

Stages run in a fixed order: HasInvite, WellFormed, DescriptionLength,
HistoryByCode, LinkValidity, HistoryByGuild and finally Commit. With the
default fail-fast mode the first failing stage produces the only warning.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

import discord

from .config import Settings
from .history import HistoryKey, HistoryStore, ModerationRecord
from .invites import InviteReference, InviteResolver, ResolvedInvite, extract_invites
from .notices import Notices

log = logging.getLogger(__name__)

MAX_EMBEDS = 10


@dataclass
class HistoryMatches:
    live: List[ModerationRecord] = field(default_factory=list)
    removed: List[ModerationRecord] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.live or self.removed)


def description_length(content: str, refs: Sequence[InviteReference]) -> int:
    return len(content) - sum(len(ref.raw_span) for ref in refs)


class AdvertisementPipeline:
    def __init__(self, store: HistoryStore, resolver: InviteResolver, settings: Settings, notices: Notices | None = None):
        self.store = store
        self.resolver = resolver
        self.settings = settings
        self.notices = notices or Notices(settings)

    async def run(self, message: discord.Message) -> List[discord.Embed]:
        """Check ``message`` and return the warnings to show.

        An empty list means the message passed and its invites were recorded.
        Store errors propagate; nothing is sent from here.
        """
        collect_all = self.settings.collect_all_warnings
        warnings: List[discord.Embed] = []

        def fail(embed: discord.Embed | None) -> bool:
            if embed is None:
                return False
            warnings.append(embed)
            return not collect_all

        content = message.content or ""
        refs = extract_invites(content)
        if fail(self.check_has_invite(refs)):
            return warnings

        invites = await self.resolver.resolve(refs)

        malformed = self.check_well_formed(invites)
        if fail(malformed):
            return warnings
        if fail(self.check_description(content, refs)):
            return warnings

        seen: set[int] = set()
        codes = list(dict.fromkeys(ref.code for ref in refs))
        keys = [HistoryKey.code(code) for code in codes]
        # a post already failing elsewhere must not cost the author their earlier one
        if fail(await self.check_history(message, keys, seen, supersede=not warnings)):
            return warnings

        # collect-all mode already reported malformed invites above
        if malformed is None and fail(self.check_link_validity(invites)):
            return warnings

        guild_ids = list(dict.fromkeys(i.owner_guild_id for i in invites if i.owner_guild_id is not None))
        keys = [HistoryKey.guild(gid) for gid in guild_ids]
        if fail(await self.check_history(message, keys, seen, supersede=not warnings)):
            return warnings

        if warnings:
            return warnings[:MAX_EMBEDS]

        await self.commit(message, invites)
        return warnings

    def check_has_invite(self, refs: Sequence[InviteReference]) -> discord.Embed | None:
        if refs:
            return None
        return self.notices.no_invite()

    def check_well_formed(self, invites: Sequence[ResolvedInvite]) -> discord.Embed | None:
        invalid = [i for i in invites if not i.is_valid]
        if not invalid:
            return None
        return self.notices.invalid_invites(invalid)

    def check_description(self, content: str, refs: Sequence[InviteReference]) -> discord.Embed | None:
        if description_length(content, refs) >= self.settings.min_description_length:
            return None
        return self.notices.description_too_short()

    def check_link_validity(self, invites: Sequence[ResolvedInvite]) -> discord.Embed | None:
        embed = self.check_well_formed(invites)
        if embed is not None:
            return embed
        expiring = [i for i in invites if not i.is_permanent]
        if not expiring:
            return None
        return self.notices.expiring_invites(expiring)

    async def check_history(
        self,
        message: discord.Message,
        keys: Sequence[HistoryKey],
        seen: set[int] | None = None,
        supersede: bool = True,
    ) -> discord.Embed | None:
        """Warn when any key was advertised inside its ban window.

        ``seen`` carries message ids already reconciled by an earlier call so
        the guild pass does not fetch them again. Matches are reconciled with
        Discord concurrently.
        """
        matches = HistoryMatches()
        seen = set() if seen is None else seen
        pending: List[ModerationRecord] = []
        for key in keys:
            records = await self.store.validate(message.id, message.channel.id, message.author.id, key)
            for record in records:
                # one message can match several keys
                if record.message_id in seen:
                    continue
                seen.add(record.message_id)
                pending.append(record)

        await asyncio.gather(*(self._sort_match(message, record, matches, supersede) for record in pending))

        if matches.live:
            live = sorted(matches.live, key=lambda r: r.timestamp, reverse=True)
            return self.notices.recently_advertised(live)
        if matches.removed:
            latest = max(matches.removed, key=lambda r: r.timestamp)
            return self.notices.recently_advertised_removed(latest, message.author.id, self.store.now())
        return None

    async def _sort_match(
        self,
        message: discord.Message,
        record: ModerationRecord,
        matches: HistoryMatches,
        supersede: bool = True,
    ) -> None:
        """Reconcile one matching record with Discord and file it as live, removed or dropped."""
        try:
            earlier = await message.channel.fetch_message(record.message_id)
        except discord.HTTPException:
            earlier = None

        if earlier is None:
            if record.soft_deleted:
                matches.removed.append(record)
                return
            log.info(
                "Message %s is gone, reconciling history (invite=%s, guild=%s)",
                record.message_id,
                record.invite_code,
                record.owner_guild_id,
            )
            result = await self.store.delete(record.message_id)
            if result.soft_deleted:
                matches.removed.append(record)
            return

        # the message exists but no longer carries this invite
        if record.soft_deleted:
            matches.removed.append(record)
            return

        grace_since = self.store.policy.grace_since(self.store.now())
        if supersede and record.author_id == message.author.id and record.timestamp > grace_since:
            if await self._supersede(earlier, record):
                return
        matches.live.append(record)

    async def _supersede(self, earlier: discord.Message, record: ModerationRecord) -> bool:
        try:
            await earlier.delete()
        except discord.NotFound:
            pass
        except discord.HTTPException:
            log.warning("Could not delete superseded message %s", record.message_id, exc_info=True)
            return False
        log.info("Author %s reposted, removed earlier message %s", record.author_id, record.message_id)
        await self.store.delete(record.message_id)
        return True

    async def commit(self, message: discord.Message, invites: Sequence[ResolvedInvite]) -> None:
        await self.store.delete(message.id)
        timestamp = int(message.created_at.timestamp())
        guild_id = message.guild.id if message.guild is not None else None
        for invite in invites:
            if invite.owner_guild_id is None:
                continue
            await self.store.insert(
                ModerationRecord(
                    invite_code=invite.code,
                    owner_guild_id=invite.owner_guild_id,
                    posting_guild_id=guild_id,
                    channel_id=message.channel.id,
                    message_id=message.id,
                    author_id=message.author.id,
                    timestamp=timestamp,
                )
            )
        log.info("Recorded advertisement %s by %s (%d invites)", message.id, message.author.id, len(invites))
