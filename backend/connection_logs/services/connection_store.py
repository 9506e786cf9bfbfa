"""Durable, deduplicated record of player connections.

The store is built once at startup and probed for availability. While the
probe result is negative every write is a no-op and every read returns an
empty result; once the store is available, database errors surface to the
caller as :class:`QueryFailure`.
"""
import asyncio
import logging
from datetime import datetime, timezone
from time import monotonic
from typing import Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from connection_logs.database import Base
from connection_logs.models.user import User
from connection_logs.schemas.user import UserRecord

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 50

_users = User.__table__
_columns = User.__mapper__.columns


class QueryFailure(Exception):
    """A query failed after the store had been reported available."""


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ConnectionStore:
    def __init__(
        self,
        engine: AsyncEngine,
        *,
        reprobe_interval: float = 0.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._engine = engine
        self._session = async_sessionmaker(engine, expire_on_commit=False)
        self._reprobe_interval = reprobe_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_probe: Optional[float] = None
        self._probe_lock = asyncio.Lock()
        self.available = False

    async def probe(self) -> bool:
        """Open a connection and create the Users table if it is missing."""
        async with self._probe_lock:
            self._last_probe = monotonic()
            try:
                async with self._engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except Exception as e:
                logger.warning("Connection store unavailable: %s", e)
                self.available = False
            else:
                if not self.available:
                    logger.info("Connection store ready (%s)", self._engine.url.render_as_string(hide_password=True))
                self.available = True
        return self.available

    async def _ready(self) -> bool:
        if self.available:
            return True
        if self._reprobe_interval <= 0:
            return False
        if self._last_probe is not None and monotonic() - self._last_probe < self._reprobe_interval:
            return False
        return await self.probe()

    async def exists(self, steam_id: str) -> bool:
        if not await self._ready():
            return False
        try:
            async with self._session() as session:
                return await _count(session, steam_id) > 0
        except SQLAlchemyError as e:
            logger.error("Existence check failed for %s: %s", steam_id, e)
            raise QueryFailure(f"exists failed for {steam_id}") from e

    async def upsert(self, steam_id: str, client_name: str) -> None:
        """Insert the player, or refresh the name and connection time of an existing row."""
        if not await self._ready():
            return
        now = self._clock()
        try:
            async with self._session() as session:
                stmt = _upsert_statement(self._engine.dialect.name, steam_id, client_name, now)
                if stmt is not None:
                    await session.execute(stmt)
                else:
                    await _check_then_act(session, steam_id, client_name, now)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Upsert failed for %s: %s", steam_id, e)
            raise QueryFailure(f"upsert failed for {steam_id}") from e
        logger.info("Recorded connection for %s (%s)", steam_id, client_name)

    async def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[UserRecord]:
        """Return up to ``limit`` players, most recently connected first."""
        if not await self._ready():
            return []
        if limit < 0:
            raise ValueError("limit must not be negative")
        if limit == 0:
            return []
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(User)
                    .order_by(User.connected_at.desc(), User.id.desc())
                    .limit(limit)
                )
                users = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Listing recent connections failed: %s", e)
            raise QueryFailure("list_recent failed") from e
        return [
            UserRecord(
                id=u.id,
                steam_id=u.steam_id,
                client_name=u.client_name,
                connected_at=_ensure_utc(u.connected_at),
            )
            for u in users
        ]

    async def dispose(self) -> None:
        await self._engine.dispose()


def _upsert_statement(dialect: str, steam_id: str, client_name: str, now: datetime):
    values = {
        _columns.steam_id: steam_id,
        _columns.client_name: client_name,
        _columns.connected_at: now,
    }
    if dialect in ("postgresql", "sqlite"):
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(_users).values(values)
        return stmt.on_conflict_do_update(
            index_elements=[_columns.steam_id],
            set_={
                _columns.client_name: stmt.excluded[_columns.client_name.key],
                _columns.connected_at: stmt.excluded[_columns.connected_at.key],
            },
        )
    if dialect in ("mysql", "mariadb"):
        stmt = mysql.insert(_users).values(values)
        return stmt.on_duplicate_key_update(
            {
                _columns.client_name: stmt.inserted[_columns.client_name.key],
                _columns.connected_at: stmt.inserted[_columns.connected_at.key],
            }
        )
    return None


async def _count(session, steam_id: str) -> int:
    result = await session.execute(select(func.count(User.id)).where(User.steam_id == steam_id))
    return result.scalar() or 0


async def _check_then_act(session, steam_id: str, client_name: str, now: datetime) -> None:
    # The unique SteamId constraint catches a concurrent insert of the same player.
    refresh = (
        update(User)
        .where(User.steam_id == steam_id)
        .values(client_name=client_name, connected_at=now)
    )
    if await _count(session, steam_id):
        await session.execute(refresh)
        return
    try:
        async with session.begin_nested():
            session.add(User(steam_id=steam_id, client_name=client_name, connected_at=now))
            await session.flush()
    except IntegrityError:
        logger.info("Concurrent insert for %s, updating instead", steam_id)
        await session.execute(refresh)
