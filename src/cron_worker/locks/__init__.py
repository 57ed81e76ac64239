from .protocol import LockBackend, lock_key
from .in_memory import InMemoryLockBackend
from .sqlalchemy import LeaseLockBackend, PostgresAdvisoryLockBackend
from .factory import LockMode, create_lock_backend

__all__ = [
    "LockBackend",
    "lock_key",
    "InMemoryLockBackend",
    "LeaseLockBackend",
    "PostgresAdvisoryLockBackend",
    "LockMode",
    "create_lock_backend",
]
