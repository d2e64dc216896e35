from __future__ import annotations

import os
from dataclasses import dataclass
from typing import FrozenSet, List

from dotenv import load_dotenv


@dataclass(frozen=True)
class BanPeriodPolicy:
    """Which history records still block an advertisement.

    Records by other authors count for ``others_window_days``; the author's
    own records count for ``self_window_days``. Own records younger than
    ``self_repost_grace_minutes`` may be superseded by a repost.
    """

    others_window_days: int = 7
    self_window_days: int = 3
    self_repost_grace_minutes: int = 30

    def others_since(self, now: float) -> int:
        return int(now - self.others_window_days * 86400)

    def self_since(self, now: float) -> int:
        return int(now - self.self_window_days * 86400)

    def grace_since(self, now: float) -> int:
        return int(now - self.self_repost_grace_minutes * 60)

    def retention_since(self, now: float) -> int:
        # nothing older than the widest window can block anyone
        return min(self.others_since(now), self.self_since(now))


@dataclass(frozen=True)
class Settings:
    token: str
    owner_ids: List[int]
    log_level: str
    log_file: str | None
    db_path: str
    prefix: str
    promo_channel_ids: FrozenSet[int]
    exempt_role_ids: FrozenSet[int]
    warning_delay_seconds: float
    min_description_length: int
    ban_period: BanPeriodPolicy
    alert_emoji: str
    display_timezone: str
    collect_all_warnings: bool
    invite_api_base: str


def _id_list(name: str) -> List[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    return [int(x) for x in raw.split(",") if x.strip().isdigit()]


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> Settings:
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        raise RuntimeError("DISCORD_TOKEN is not set in environment")

    warning_mode = os.getenv("WARNING_MODE", "first").strip().lower()
    if warning_mode not in ("first", "all"):
        raise RuntimeError(f"WARNING_MODE must be 'first' or 'all', got {warning_mode!r}")

    ban_period = BanPeriodPolicy(
        others_window_days=_int("BAN_PERIOD_DAYS", 7),
        self_window_days=_int("BAN_PERIOD_SELF_DAYS", 3),
        self_repost_grace_minutes=_int("SELF_REPOST_GRACE_MINUTES", 30),
    )

    return Settings(
        token=token,
        owner_ids=_id_list("OWNER_IDS"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE") or None,
        db_path=os.getenv("DB_PATH", "./data/promoguard.db"),
        prefix=os.getenv("PREFIX", "!"),
        promo_channel_ids=frozenset(_id_list("PROMO_CHANNEL_IDS")),
        exempt_role_ids=frozenset(_id_list("EXEMPT_ROLE_IDS")),
        warning_delay_seconds=_float("WARNING_DELAY_SECONDS", 30.0),
        min_description_length=_int("MIN_DESCRIPTION_LENGTH", 20),
        ban_period=ban_period,
        alert_emoji=os.getenv("ALERT_EMOJI", "⚠️"),
        display_timezone=os.getenv("DISPLAY_TIMEZONE", "UTC"),
        collect_all_warnings=warning_mode == "all",
        invite_api_base=os.getenv("INVITE_API_BASE", "https://discord.com/api/v10").rstrip("/"),
    )
