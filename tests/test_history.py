"""
Tests for the history store: windows, soft deletes and purging.
"""

import pytest

from promoguard.history import DeleteResult, HistoryKey

from factories import CHANNEL_ID, DAY, GUILD_ID, MINUTE, NOW, make_record


async def validate_code(store, code="abc123", *, author_id=10, exclude=1, channel_id=CHANNEL_ID):
    return await store.validate(exclude, channel_id, author_id, HistoryKey.code(code))


class TestValidate:
    """Tests for windowed history lookups."""

    @pytest.mark.asyncio
    async def test_other_author_inside_window(self, store):
        await store.insert(make_record(author_id=20, timestamp=NOW - 3 * DAY))
        records = await validate_code(store, author_id=10)
        assert [r.message_id for r in records] == [50]
        assert records[0].posting_guild_id == GUILD_ID

    @pytest.mark.asyncio
    async def test_other_author_outside_window(self, store):
        await store.insert(make_record(author_id=20, timestamp=NOW - 8 * DAY))
        assert await validate_code(store, author_id=10) == []

    @pytest.mark.asyncio
    async def test_self_window_is_shorter(self, store):
        await store.insert(make_record(author_id=10, message_id=51, timestamp=NOW - 5 * DAY))
        await store.insert(make_record(author_id=10, message_id=52, timestamp=NOW - 2 * DAY))

        records = await validate_code(store, author_id=10)
        assert [r.message_id for r in records] == [52]

        # the same five-day-old record still blocks everyone else
        others = await validate_code(store, author_id=99)
        assert [r.message_id for r in others] == [52, 51]

    @pytest.mark.asyncio
    async def test_excludes_triggering_message(self, store):
        await store.insert(make_record(message_id=1, author_id=20))
        assert await validate_code(store, exclude=1) == []

    @pytest.mark.asyncio
    async def test_scoped_to_channel(self, store):
        await store.insert(make_record(channel_id=CHANNEL_ID + 1))
        assert await validate_code(store) == []

    @pytest.mark.asyncio
    async def test_lookup_by_guild(self, store):
        await store.insert(make_record(code="other", owner=777))
        assert await validate_code(store, "abc123") == []

        records = await store.validate(1, CHANNEL_ID, 10, HistoryKey.guild(777))
        assert [r.invite_code for r in records] == ["other"]

    @pytest.mark.asyncio
    async def test_outside_all_windows_is_clean(self, store, clock):
        await store.insert(make_record(author_id=10, timestamp=NOW))
        clock.now = NOW + 8 * DAY
        assert await validate_code(store, author_id=10) == []
        assert await validate_code(store, author_id=20) == []


class TestInsert:
    """Tests for upserting records."""

    @pytest.mark.asyncio
    async def test_last_writer_wins(self, store):
        await store.insert(make_record(owner=1))
        await store.insert(make_record(owner=2))

        records = await store.records_by_author(GUILD_ID, 20)
        assert len(records) == 1
        assert records[0].owner_guild_id == 2

    @pytest.mark.asyncio
    async def test_reinsert_clears_soft_delete(self, store):
        await store.insert(make_record(soft_deleted=True))
        await store.insert(make_record())
        records = await store.records_by_author(GUILD_ID, 20)
        assert [r.soft_deleted for r in records] == [False]


class TestDelete:
    """Tests for hard/soft deletion around the repost grace window."""

    @pytest.mark.asyncio
    async def test_recent_record_is_erased(self, store):
        await store.insert(make_record(timestamp=NOW - 5 * MINUTE))

        result = await store.delete(50)

        assert result == DeleteResult(removed=1, soft_deleted=0, purged=0)
        assert await store.records_by_author(GUILD_ID, 20, include_deleted=True) == []
        assert await validate_code(store) == []

    @pytest.mark.asyncio
    async def test_old_record_is_soft_deleted(self, store):
        await store.insert(make_record(timestamp=NOW - 2 * DAY))

        result = await store.delete(50)

        assert result.removed == 0
        assert result.soft_deleted == 1
        # hidden from the default author listing, still blocks re-advertising
        assert await store.records_by_author(GUILD_ID, 20) == []
        kept = await store.records_by_author(GUILD_ID, 20, include_deleted=True)
        assert [r.soft_deleted for r in kept] == [True]
        assert [r.soft_deleted for r in await validate_code(store)] == [True]

    @pytest.mark.asyncio
    async def test_delete_twice_is_noop(self, store):
        await store.insert(make_record(timestamp=NOW - 2 * DAY))
        await store.delete(50)
        assert await store.delete(50) == DeleteResult()

    @pytest.mark.asyncio
    async def test_unknown_message(self, store):
        assert await store.delete(12345) == DeleteResult()

    @pytest.mark.asyncio
    async def test_all_invites_of_message_affected(self, store):
        await store.insert(make_record(code="one", timestamp=NOW - 2 * DAY))
        await store.insert(make_record(code="two", timestamp=NOW - 2 * DAY))
        result = await store.delete(50)
        assert result.soft_deleted == 2

    @pytest.mark.asyncio
    async def test_purges_records_past_retention(self, store):
        await store.insert(make_record(message_id=60, timestamp=NOW - 10 * DAY))
        await store.insert(make_record(message_id=61, timestamp=NOW - 1 * DAY))

        result = await store.delete(999)

        assert result.purged == 1
        remaining = await store.records_by_author(GUILD_ID, 20, include_deleted=True)
        assert [r.message_id for r in remaining] == [61]


class TestAuthorHistory:
    """Tests for per-author listings and purging."""

    @pytest.mark.asyncio
    async def test_newest_first_and_scoped_to_guild(self, store):
        await store.insert(make_record(message_id=70, timestamp=NOW - 2 * DAY))
        await store.insert(make_record(message_id=71, timestamp=NOW - 1 * DAY))
        await store.insert(make_record(message_id=72, author_id=21))

        records = await store.records_by_author(GUILD_ID, 20)
        assert [r.message_id for r in records] == [71, 70]
        assert await store.records_by_author(GUILD_ID + 1, 20) == []

    @pytest.mark.asyncio
    async def test_purge_expired(self, store):
        await store.insert(make_record(message_id=80, timestamp=NOW - 30 * DAY))
        await store.insert(make_record(message_id=81))

        assert await store.purge_expired() == 1
        assert [r.message_id for r in await store.records_by_author(GUILD_ID, 20)] == [81]

    def test_jump_url(self):
        record = make_record(message_id=5)
        assert record.jump_url == f"https://discord.com/channels/{GUILD_ID}/{CHANNEL_ID}/5"
