"""Storage adapter protocol.

An adapter stores one opaque, JSON-compatible record per project key. The
store always reads and writes whole records; adapters give no isolation
beyond last-writer-wins per key.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

Record = dict[str, Any]


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol that all storage backends must implement."""

    @property
    def name(self) -> str: ...

    async def get(self, key: str) -> Record | None:
        """Return the record stored under ``key``, or None."""
        ...

    async def set(self, key: str, record: Record) -> None:
        """Replace the record stored under ``key``."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are not an error."""
        ...

    async def keys(self) -> list[str]:
        """All keys currently stored."""
        ...
