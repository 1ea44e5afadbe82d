"""Process-local storage, for development and tests."""

from __future__ import annotations

import copy

from storybible.storage.base import Record


class MemoryStorage:
    """Dict-backed adapter. Records are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Record | None:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def set(self, key: str, record: Record) -> None:
        self._records[key] = copy.deepcopy(record)

    async def delete(self, key: str) -> None:
        self._records.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._records)
