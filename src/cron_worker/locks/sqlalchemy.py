import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import BigInteger, Column, DateTime, String, delete, insert, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base

from cron_worker.errors import LockBackendError

logger = logging.getLogger(__name__)

Base = declarative_base()


class LockLeaseModel(Base):
    __tablename__ = 'worker_lock_leases'

    lock_key = Column(BigInteger, primary_key=True, autoincrement=False)
    owner = Column(String, nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class PostgresAdvisoryLockBackend:
    """
    Lock backend on Postgres session-level advisory locks.

    Advisory locks belong to the database session that took them, so every
    acquired key keeps its own connection checked out of the pool until it
    is released; acquire and release always run on the same session.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._connections: Dict[int, AsyncConnection] = {}

    @property
    def supports_distributed_locking(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    async def try_acquire(self, key: int) -> bool:
        try:
            conn = await self.engine.connect()
        except SQLAlchemyError as e:
            raise LockBackendError(f"failed to connect for lock {key}: {e}") from e

        try:
            result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})
            acquired = bool(result.scalar())
            # The session-level lock outlives the transaction; don't sit idle in one.
            await conn.commit()
        except SQLAlchemyError as e:
            await conn.invalidate()
            raise LockBackendError(f"failed to acquire lock {key}: {e}") from e

        if not acquired:
            await conn.close()
            return False
        self._connections[key] = conn
        return True

    async def release(self, key: int) -> None:
        conn = self._connections.pop(key, None)
        if conn is None:
            raise LockBackendError(f"lock {key} is not held by this process")

        try:
            result = await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
            released = bool(result.scalar())
            await conn.commit()
        except SQLAlchemyError as e:
            # Dropping the session is the only other way to free the lock.
            await conn.invalidate()
            raise LockBackendError(f"failed to release lock {key}: {e}") from e
        await conn.close()
        if not released:
            raise LockBackendError(f"lock {key} was not held by its session")


class LeaseLockBackend:
    """
    Row-based lock backend with expiring leases.

    A lease is a row keyed by the lock id. Acquiring first clears an expired
    lease for the key, then inserts a new one; a unique violation means
    another owner holds it. A lease that outlives ``ttl`` can be taken over,
    so ``ttl`` should exceed the longest expected run of a task.
    """

    def __init__(self, engine: AsyncEngine, ttl: timedelta = timedelta(minutes=5), owner: Optional[str] = None):
        self.engine = engine
        self.ttl = ttl
        self.owner = owner or f"own_{uuid.uuid4().hex[:12]}"

    @classmethod
    def from_url(cls, db_url: str, **kwargs) -> "LeaseLockBackend":
        return cls(create_async_engine(db_url), **kwargs)

    @property
    def supports_distributed_locking(self) -> bool:
        return True

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def try_acquire(self, key: int) -> bool:
        now = datetime.now(timezone.utc)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    delete(LockLeaseModel)
                    .where(LockLeaseModel.lock_key == key)
                    .where(LockLeaseModel.expires_at <= now)
                )
            async with self.engine.begin() as conn:
                await conn.execute(
                    insert(LockLeaseModel).values(
                        lock_key=key,
                        owner=self.owner,
                        acquired_at=now,
                        expires_at=now + self.ttl,
                    )
                )
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            raise LockBackendError(f"failed to acquire lease {key}: {e}") from e
        return True

    async def release(self, key: int) -> None:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(LockLeaseModel)
                    .where(LockLeaseModel.lock_key == key)
                    .where(LockLeaseModel.owner == self.owner)
                )
        except SQLAlchemyError as e:
            raise LockBackendError(f"failed to release lease {key}: {e}") from e
        if result.rowcount == 0:
            raise LockBackendError(f"lease {key} is not held by {self.owner}")
