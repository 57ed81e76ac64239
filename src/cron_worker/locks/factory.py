import logging
from datetime import timedelta
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from cron_worker.locks.protocol import LockBackend
from cron_worker.locks.sqlalchemy import LeaseLockBackend, PostgresAdvisoryLockBackend

logger = logging.getLogger(__name__)


class LockMode(str, Enum):
    ADVISORY = "advisory"
    LEASE = "lease"
    NONE = "none"


def create_lock_backend(
    engine: Optional[AsyncEngine],
    mode: LockMode = LockMode.ADVISORY,
    lease_ttl: timedelta = timedelta(minutes=5),
) -> Optional[LockBackend]:
    """
    Build the lock backend for a database engine.

    Advisory locking needs Postgres; for any other dialect no backend is
    returned and the worker runs without distributed locking.

    Returns:
        Optional[LockBackend]: The backend, or None when locking is unavailable or disabled.
    """
    if engine is None or mode == LockMode.NONE:
        return None

    if mode == LockMode.LEASE:
        return LeaseLockBackend(engine, ttl=lease_ttl)

    if mode == LockMode.ADVISORY:
        backend = PostgresAdvisoryLockBackend(engine)
        if not backend.supports_distributed_locking:
            logger.warning(
                "Advisory locks need postgresql, got dialect '%s'; distributed locking unavailable",
                engine.dialect.name,
            )
            return None
        return backend

    raise ValueError(f"Unsupported lock mode: {mode}")
