"""Storage backends for Story Bible records.

Backends:
    memory    process-local dict (development, tests)
    markdown  one frontmatter markdown file per project (default)
    sqlite    embedded SQLite file, one row per project
    remote    HTTP document store (needs the ``remote`` extra)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from storybible.storage.base import Record, StorageAdapter

if TYPE_CHECKING:
    from storybible.config import StorageConfig

__all__ = ["Record", "StorageAdapter", "build_storage"]


def build_storage(config: StorageConfig) -> StorageAdapter:
    """Instantiate the backend named in ``config.backend``."""
    name = config.backend
    if name == "memory":
        from storybible.storage.memory import MemoryStorage

        return MemoryStorage()
    if name == "markdown":
        from storybible.storage.markdown import MarkdownStorage

        return MarkdownStorage(config.root, keep_versions=config.keep_versions)
    if name == "sqlite":
        from storybible.storage.sqlite import SqliteStorage

        return SqliteStorage(config.sqlite_path)
    if name == "remote":
        if not config.remote_url:
            raise ValueError("remote storage needs remote_url")
        from storybible.storage.remote import RemoteStorage

        return RemoteStorage(config.remote_url, timeout=config.timeout, token=config.remote_token)
    raise ValueError(f"Unknown storage backend: {name}")
