import os
import tempfile

# main.py builds a module-level app on import; keep its database out of the repo
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.mkdtemp(prefix="mayfile-"), "pastes.db"))

import pytest
import pytest_asyncio
from databases import Database

from store import PasteStore
from tokens import TokenAllocator

START = 1_700_000_000


class FakeClock:
    """Deterministic epoch-seconds clock."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


def scripted_tokens(*tokens):
    """Token generator that hands out the given tokens in order, then fails loudly."""
    it = iter(tokens)

    def generate(length):
        return next(it)

    return generate


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'pastes.db'}"


@pytest_asyncio.fixture
async def store(db_url, clock):
    database = Database(db_url)
    await database.connect()
    s = PasteStore(database, clock=clock)
    await s.ensure_schema()
    yield s
    await database.disconnect()


@pytest_asyncio.fixture
async def make_store(db_url, clock):
    """Build extra stores on the same database, e.g. with a scripted allocator."""
    databases = []

    async def factory(generate=None):
        database = Database(db_url)
        await database.connect()
        databases.append(database)
        allocator = TokenAllocator(generate) if generate else None
        s = PasteStore(database, clock=clock, allocator=allocator)
        await s.ensure_schema()
        return s

    yield factory
    for database in databases:
        await database.disconnect()
