from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

import aiohttp

log = logging.getLogger(__name__)

INVITE_RE = re.compile(
    r"(?:https?://)?"
    r"(?:discord\.(?:gg|io|me|li)|(?:discord|discordapp)\.com/invite)"
    r"/(?P<code>[A-Za-z0-9-]+)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class InviteReference:
    raw_span: str
    code: str


@dataclass(frozen=True)
class ResolvedInvite:
    reference: InviteReference
    expires_at: datetime | None = None
    owner_guild_id: int | None = None

    @property
    def raw_span(self) -> str:
        return self.reference.raw_span

    @property
    def code(self) -> str:
        return self.reference.code

    @property
    def is_valid(self) -> bool:
        return self.owner_guild_id is not None

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None


def extract_invites(text: str) -> list[InviteReference]:
    """Every invite link in ``text``, in order of appearance, duplicates kept."""
    return [InviteReference(raw_span=m.group(0), code=m.group("code")) for m in INVITE_RE.finditer(text or "")]


def parse_invite_payload(reference: InviteReference, payload: Any) -> ResolvedInvite:
    """Build a :class:`ResolvedInvite` from a ``GET /invites/{code}`` body.

    Raises ``ValueError`` when ``expires_at`` is present but not a timestamp.
    """
    if not isinstance(payload, Mapping):
        raise ValueError(f"unexpected invite payload type {type(payload).__name__}")

    expires_raw = payload.get("expires_at")
    expires_at = None
    if expires_raw is not None:
        if not isinstance(expires_raw, str):
            raise ValueError(f"expires_at is not a string: {expires_raw!r}")
        expires_at = datetime.fromisoformat(expires_raw.replace("Z", "+00:00"))

    guild_id = None
    guild = payload.get("guild")
    if isinstance(guild, Mapping):
        raw_id = guild.get("id")
        if raw_id is not None:
            guild_id = int(raw_id)

    return ResolvedInvite(reference=reference, expires_at=expires_at, owner_guild_id=guild_id)


class InviteResolver:
    """Looks invite codes up against the public invite endpoint."""

    def __init__(self, api_base: str = "https://discord.com/api/v10", session: aiohttp.ClientSession | None = None):
        self.api_base = api_base.rstrip("/")
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def resolve(self, refs: Sequence[InviteReference]) -> list[ResolvedInvite]:
        if not refs:
            return []
        return list(await asyncio.gather(*(self._resolve_one(ref) for ref in refs)))

    async def _resolve_one(self, ref: InviteReference) -> ResolvedInvite:
        url = f"{self.api_base}/invites/{ref.code}"
        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    log.info("Invite lookup for %s returned HTTP %s", ref.code, resp.status)
                    return ResolvedInvite(reference=ref)
                payload = await resp.json(content_type=None)
            return parse_invite_payload(ref, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            log.warning("Invite lookup for %s failed: %r", ref.code, exc)
            return ResolvedInvite(reference=ref)
