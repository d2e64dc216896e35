"""
Shared fixtures: settings, a real history store on a temp sqlite file.
"""

import pytest
import pytest_asyncio

from factories import FakeClock, make_settings
from promoguard.history import HistoryStore
from promoguard.utils.db import Database


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "history.db"))
    await database.connect()
    await database.init_schema()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def store(db, settings, clock):
    return HistoryStore(db, settings.ban_period, clock=clock)
