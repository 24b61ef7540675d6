"""Durable store access for ShortURL records.

The store is the single source of truth for short codes and their hit
counts. Every call runs in its own short-lived session under a bounded
timeout; timeouts and connectivity failures surface as
``TransientBackendError`` so callers can tell "the store is unwell" apart
from "the code does not exist".

Hit counts are only ever changed through ``increment_hits``, an additive
``UPDATE`` evaluated by the database, so concurrent flushes compose without
lost updates and a flush for a deleted code touches no row.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from prometheus_client import Counter
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.exceptions import DuplicateCodeError, TransientBackendError
from shortener.models import ShortURL

__all__ = ["ShortURLStore"]

DATABASE_READS_TOTAL = Counter(
    "shortener_database_reads_total",
    "Total durable store read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortener_database_writes_total",
    "Total durable store write operations",
)


class ShortURLStore:
    """Async repository over the ``short_urls`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout_seconds: float):
        assert timeout_seconds > 0, f"timeout_seconds must be positive, got {timeout_seconds!r}"
        self._session_factory = session_factory
        self._timeout = timeout_seconds

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self._timeout):
                yield
        except TimeoutError as exc:
            raise TransientBackendError(f"{operation} timed out after {self._timeout}s") from exc
        except (OperationalError, InterfaceError) as exc:
            raise TransientBackendError(f"{operation} failed: {exc}") from exc

    async def insert(self, code: str, origin_url: str, owner_id: str) -> ShortURL:
        """Persist a new record.

        Raises:
            DuplicateCodeError: ``code`` was taken by a concurrent insert.
        """
        async with self._guard("insert"):
            async with self._session_factory() as session:
                record = ShortURL(code=code, origin_url=origin_url, owner_id=owner_id, hits=0)
                session.add(record)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise DuplicateCodeError(f"Short code '{code}' already exists") from exc
                DATABASE_WRITES_TOTAL.inc()
                await session.refresh(record)
                return record

    async def get_by_code(self, code: str) -> ShortURL | None:
        async with self._guard("get_by_code"):
            async with self._session_factory() as session:
                result = await session.execute(select(ShortURL).where(ShortURL.code == code))
                DATABASE_READS_TOTAL.inc()
                return result.scalar_one_or_none()

    async def exists(self, code: str) -> bool:
        async with self._guard("exists"):
            async with self._session_factory() as session:
                result = await session.execute(select(func.count()).select_from(ShortURL).where(ShortURL.code == code))
                DATABASE_READS_TOTAL.inc()
                return result.scalar_one() > 0

    async def list_by_owner(self, owner_id: str) -> Sequence[ShortURL]:
        async with self._guard("list_by_owner"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ShortURL)
                    .where(ShortURL.owner_id == owner_id)
                    .order_by(ShortURL.created_at.desc(), ShortURL.id.desc())
                )
                DATABASE_READS_TOTAL.inc()
                return result.scalars().all()

    async def delete(self, code: str) -> bool:
        """Hard-delete ``code``. Returns False if no row matched."""
        async with self._guard("delete"):
            async with self._session_factory() as session:
                result = await session.execute(delete(ShortURL).where(ShortURL.code == code))
                await session.commit()
                DATABASE_WRITES_TOTAL.inc()
                return result.rowcount > 0

    async def increment_hits(self, code: str, delta: int) -> bool:
        """Add ``delta`` to the stored hit count.

        Returns False, without error, when the code no longer exists.
        """
        assert isinstance(delta, int) and delta > 0, f"delta must be positive int, got {delta!r}"
        async with self._guard("increment_hits"):
            async with self._session_factory() as session:
                result = await session.execute(
                    update(ShortURL).where(ShortURL.code == code).values(hits=ShortURL.hits + delta)
                )
                await session.commit()
                DATABASE_WRITES_TOTAL.inc()
                return result.rowcount > 0

    async def ping(self) -> None:
        async with self._guard("ping"):
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
