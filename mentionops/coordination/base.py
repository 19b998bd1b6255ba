"""Base key-value contract shared by admission control and locks."""

from __future__ import annotations

import abc


class BaseCoordinationStore(metaclass=abc.ABCMeta):
    """Abstract store offering the atomic primitives coordination relies on.

    Keys passed in are relative; implementations apply their namespace
    prefix.
    """

    async def connect(self) -> None:
        """Open connection to the store (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the store (no-op by default)."""
        pass

    @abc.abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        """Store ``value`` under ``key`` with expiry unless the key exists."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the live value stored under ``key``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` unconditionally."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Atomically remove ``key`` only while it still holds ``expected``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def expire_if_equals(self, key: str, expected: str, ttl_ms: int) -> bool:
        """Atomically reset the expiry of ``key`` while it holds ``expected``."""
        raise NotImplementedError
