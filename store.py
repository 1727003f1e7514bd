"""
Paste record store.

All expiry, eviction, burn-on-read and renewal rules live here. Every method
is a handful of individually atomic statements against the shared `pastes`
table; nothing is cached between calls.
"""
import logging
import sqlite3
from functools import wraps
from typing import Callable, List, Optional

from databases import Database
from sqlalchemy import insert, select, update, delete, func, or_, cast, LargeBinary, text

from db_sqlalchemy import pastes, init_db
from errors import CollisionExhausted, NotFound, RenewalNotAllowed, RenewalTooEarly, StoreError, ValidationRejected
from normalize import normalize_language
from schemas import Paste
from tokens import TokenAllocator
from utils import now_ts

logger = logging.getLogger(__name__)

PASTE_FIELDS = (
    "id", "token", "title", "content", "language", "created_at", "expires_at",
    "original_duration", "views", "max_views", "is_public",
)

# eviction victims: whatever would die soonest anyway, oldest first on ties
EVICTION_ORDER = (pastes.c.expires_at.asc(), pastes.c.id.asc())

content_bytes = func.length(cast(pastes.c.content, LargeBinary))


def _to_paste(row) -> Paste:
    return Paste(**{k: row[k] for k in PASTE_FIELDS})


def _is_token_collision(err: sqlite3.IntegrityError) -> bool:
    msg = str(err)
    return "UNIQUE constraint failed" in msg and "token" in msg


def store_errors(fn):
    """Re-raise driver failures as StoreError so callers never see sqlite3 types."""
    @wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except sqlite3.Error as e:
            logger.error("Store operation %s failed: %s: %s", fn.__name__, type(e).__name__, e)
            raise StoreError(str(e)) from e
    return wrapper


class PasteStore:

    def __init__(
        self,
        database: Database,
        clock: Callable[[], int] = now_ts,
        allocator: Optional[TokenAllocator] = None,
    ):
        self.database = database
        self.clock = clock
        self.allocator = allocator or TokenAllocator()

    async def ensure_schema(self) -> list:
        return await init_db(str(self.database.url))

    @store_errors
    async def ping(self) -> bool:
        return await self.database.fetch_val(text("SELECT 1")) == 1

    # -- maintenance --------------------------------------------------------

    @store_errors
    async def sweep_expired(self) -> int:
        """Delete every paste whose expiry is at or before now. Returns rows removed."""
        q = delete(pastes).where(pastes.c.expires_at <= self.clock()).returning(pastes.c.id)
        removed = len(await self.database.fetch_all(q))
        if removed:
            logger.info("Swept %d expired pastes", removed)
        return removed

    @store_errors
    async def enforce_row_capacity(self, max_rows: int, reserve: int = 0) -> int:
        """Evict pastes until at most `max_rows - reserve` remain."""
        allowed = max(max_rows - reserve, 0)
        count = await self.live_count()
        if count <= allowed:
            return 0
        overflow = count - allowed
        victims = select(pastes.c.id).order_by(*EVICTION_ORDER).limit(overflow)
        await self.database.execute(delete(pastes).where(pastes.c.id.in_(victims)))
        logger.info("Evicted %d pastes over row capacity %d (reserve %d)", overflow, max_rows, reserve)
        return overflow

    @store_errors
    async def enforce_byte_budget(self, max_bytes: int, reserve: int = 0) -> int:
        """Evict pastes until total content size is at most `max_bytes - reserve`."""
        allowed = max(max_bytes - reserve, 0)
        total = await self.total_content_bytes()
        if total <= allowed:
            return 0
        q = select(pastes.c.id, content_bytes.label("size")).order_by(*EVICTION_ORDER)
        rows = await self.database.fetch_all(q)
        removed = 0
        for row in rows:
            if total <= allowed:
                break
            await self.database.execute(delete(pastes).where(pastes.c.id == row["id"]))
            total -= row["size"] or 0
            removed += 1
        logger.info("Evicted %d pastes over byte budget %d (reserve %d)", removed, max_bytes, reserve)
        return removed

    async def housekeeping(self, max_rows: int, reserve: int = 0):
        await self.sweep_expired()
        await self.enforce_row_capacity(max_rows, reserve)

    # -- writes -------------------------------------------------------------

    async def insert(
        self,
        title: str,
        content: str,
        ttl: int,
        token_length: int,
        language: str = "auto",
        max_views: Optional[int] = None,
        is_public: bool = False,
    ) -> str:
        """Store a paste and return its freshly allocated token."""
        paste = await self.create(title, content, ttl, token_length, language, max_views, is_public)
        return paste.token

    @store_errors
    async def create(
        self,
        title: str,
        content: str,
        ttl: int,
        token_length: int,
        language: str = "auto",
        max_views: Optional[int] = None,
        is_public: bool = False,
    ) -> Paste:
        """Store a paste and return the row exactly as written.

        A burn-limited paste is never public: when both are requested the
        paste is stored private.
        """
        if ttl <= 0:
            raise ValidationRejected("ttl must be positive")
        if token_length < 1:
            raise ValidationRejected("token length must be positive")
        if max_views is not None and max_views <= 0:
            max_views = None
        now = self.clock()
        values = dict(
            title=title,
            content=content,
            language=normalize_language(language),
            created_at=now,
            expires_at=now + ttl,
            original_duration=ttl,
            views=0,
            max_views=max_views,
            is_public=bool(is_public) and max_views is None,
        )
        attempts = 0
        for token in self.allocator.proposals(token_length):
            attempts += 1
            try:
                row = await self.database.fetch_one(
                    insert(pastes).values(token=token, **values).returning(*pastes.c)
                )
            except sqlite3.IntegrityError as e:
                if not _is_token_collision(e):
                    raise
                logger.warning("Token collision on attempt %d at length %d", attempts, token_length)
                continue
            return _to_paste(row)
        logger.error("Gave up allocating a token after %d attempts at length %d", attempts, token_length)
        raise CollisionExhausted(token_length, attempts)

    @store_errors
    async def delete(self, token: str):
        """Delete by token. Deleting a token that is already gone is a no-op."""
        await self.database.execute(delete(pastes).where(pastes.c.token == token))

    # -- reads --------------------------------------------------------------

    @store_errors
    async def read(self, token: str) -> Paste:
        """Count one view and return the paste, deleting it if that was its last allowed view."""
        q = (
            update(pastes)
            .where(pastes.c.token == token)
            .where(pastes.c.expires_at > self.clock())
            .where(or_(
                pastes.c.max_views == None,
                pastes.c.max_views <= 0,
                pastes.c.views < pastes.c.max_views,
            ))
            .values(views=pastes.c.views + 1)
            .returning(*pastes.c)
        )
        row = await self.database.fetch_one(q)
        if row is None:
            raise NotFound(token)
        paste = _to_paste(row)
        if paste.max_views is not None and paste.max_views > 0 and paste.views >= paste.max_views:
            await self.delete(token)
            logger.info("Paste %s burned after %d views", token, paste.views)
        return paste

    async def read_raw(self, token: str) -> str:
        paste = await self.read(token)
        return paste.content

    @store_errors
    async def peek(self, token: str) -> Paste:
        """Fetch a live paste without counting a view."""
        q = select(pastes).where(pastes.c.token == token).where(pastes.c.expires_at > self.clock())
        row = await self.database.fetch_one(q)
        if row is None:
            raise NotFound(token)
        return _to_paste(row)

    @store_errors
    async def renew(self, token: str) -> int:
        """Reset a public paste's lifetime once more than half of it has elapsed.

        Returns the new expiry. Raises RenewalNotAllowed for private or
        burn-limited pastes and RenewalTooEarly when the paste is still fresh.
        """
        now = self.clock()
        q = (
            select(pastes.c.expires_at, pastes.c.original_duration, pastes.c.is_public, pastes.c.max_views)
            .where(pastes.c.token == token)
            .where(pastes.c.expires_at > now)
        )
        row = await self.database.fetch_one(q)
        if row is None:
            raise NotFound(token)
        if not row["is_public"] or row["max_views"] is not None:
            raise RenewalNotAllowed(token)
        duration = row["original_duration"]
        remaining = row["expires_at"] - now
        if remaining >= duration // 2:
            raise RenewalTooEarly(token)
        new_expires_at = now + duration
        renewed = await self.database.fetch_one(
            update(pastes)
            .where(pastes.c.token == token)
            .where(pastes.c.expires_at == row["expires_at"])
            .values(expires_at=new_expires_at)
            .returning(pastes.c.expires_at)
        )
        if renewed is None:
            # gone since the select (NotFound), or renewed concurrently
            await self.peek(token)
            raise RenewalTooEarly(token)
        logger.info("Paste %s renewed until %d", token, new_expires_at)
        return new_expires_at

    def _public_filter(self, q):
        return (
            q.where(pastes.c.is_public == True)
            .where(pastes.c.max_views == None)
            .where(pastes.c.expires_at > self.clock())
        )

    @store_errors
    async def list_public(self, limit: int = 100, offset: int = 0) -> List[Paste]:
        q = self._public_filter(select(pastes))
        q = q.order_by(pastes.c.created_at.desc(), pastes.c.id.desc()).limit(limit).offset(offset)
        rows = await self.database.fetch_all(q)
        return [_to_paste(r) for r in rows]

    @store_errors
    async def count_public(self) -> int:
        return await self.database.fetch_val(self._public_filter(select(func.count()).select_from(pastes)))

    # -- stats --------------------------------------------------------------

    @store_errors
    async def live_count(self) -> int:
        return await self.database.fetch_val(select(func.count()).select_from(pastes))

    @store_errors
    async def total_content_bytes(self) -> int:
        return await self.database.fetch_val(select(func.coalesce(func.sum(content_bytes), 0)))

    @store_errors
    async def high_water_id(self) -> int:
        """Largest id ever assigned, including ids of rows since deleted."""
        max_id = await self.database.fetch_val(select(func.max(pastes.c.id))) or 0
        has_sequence = await self.database.fetch_val(
            text("SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
        )
        if not has_sequence:
            return max_id
        seq = await self.database.fetch_val(text("SELECT seq FROM sqlite_sequence WHERE name = 'pastes'"))
        return max(max_id, seq or 0)

    async def faded_count(self) -> int:
        """Pastes created at some point that no longer exist."""
        return max(await self.high_water_id() - await self.live_count(), 0)
