import hashlib
from typing import Protocol, runtime_checkable


def lock_key(name: str) -> int:
    """
    Derive a signed 64-bit lock id from a task name.

    Uses an 8-byte BLAKE2b digest so the key fits a Postgres ``bigint``.
    """
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


@runtime_checkable
class LockBackend(Protocol):
    @property
    def supports_distributed_locking(self) -> bool:
        """Whether the backend is shared by every replica of the service."""
        ...

    async def try_acquire(self, key: int) -> bool:
        """Try to take the lock without blocking. Return True if it was acquired."""
        ...

    async def release(self, key: int) -> None:
        """Release a lock held by this process. Raise LockBackendError if it was not held."""
        ...
