"""Story Bible store: the operation set callers use.

Each mutating call is one whole-record cycle: load and migrate, merge in
memory, prune, write back. There are no locks; two writers racing on one
project resolve as last-write-wins. Batch related edits into one
``upsert_entities`` call to keep the read-modify-write window short.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from storybible.bible import merge
from storybible.bible.models import SCHEMA_VERSION, Bible, Quotas, SearchResult
from storybible.bible.projection import search, snapshot
from storybible.bible.quota import prune
from storybible.bible.schema import migrate
from storybible.config import SnapshotConfig

if TYPE_CHECKING:
    from storybible.config import StoryBibleConfig
    from storybible.storage.base import StorageAdapter

logger = logging.getLogger(__name__)

LEGACY_BUCKET_KEY = "sl_bible_v1"


def now_ms() -> int:
    return int(time.time() * 1000)


class BibleStore:
    """Async facade over one storage adapter."""

    def __init__(
        self,
        storage: StorageAdapter,
        quotas: Quotas | None = None,
        snapshot_config: SnapshotConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.storage = storage
        self.quotas = quotas or Quotas()
        self.snapshot_config = snapshot_config or SnapshotConfig()
        self._clock = clock

    @classmethod
    def from_config(cls, config: StoryBibleConfig) -> BibleStore:
        from storybible.storage import build_storage

        return cls(build_storage(config.storage), config.quotas, config.snapshot)

    async def close(self) -> None:
        close = getattr(self.storage, "close", None)
        if close is not None:
            await close()

    # ── Load / save cycle ────────────────────────────────────

    async def _load(self, project_id: str) -> tuple[Bible, bool]:
        """Load and normalize. The flag is set when the stored record should be rewritten."""
        raw = await self.storage.get(project_id)
        bible = migrate(raw, project_id, self._clock(), self.quotas)
        stale = not isinstance(raw, Mapping) or raw.get("schemaVersion") != bible.schema_version
        return bible, stale

    async def _save(self, bible: Bible) -> Bible:
        stamped = replace(
            bible,
            updated_at=self._clock(),
            schema_version=max(bible.schema_version, SCHEMA_VERSION),
        )
        pruned = prune(stamped, self.quotas)
        await self.storage.set(pruned.project_id, pruned.to_wire())
        return pruned

    async def _apply(self, project_id: str, op: Callable[[Bible], Bible]) -> None:
        bible, stale = await self._load(project_id)
        updated = op(bible)
        if updated is bible and not stale:
            return
        await self._save(updated)

    # ── Whole-aggregate access ───────────────────────────────

    async def get_bible(self, project_id: str) -> Bible:
        """Fetch a project's bible, creating and persisting an empty one if missing."""
        bible, stale = await self._load(project_id)
        if stale:
            await self.storage.set(project_id, bible.to_wire())
            logger.info("Initialized bible %s (schema v%d)", project_id, bible.schema_version)
        return bible

    async def put_bible(self, bible: Bible) -> None:
        """Replace the whole aggregate. Caps are re-applied."""
        await self._save(bible)

    async def export_bible(self, project_id: str) -> dict[str, Any]:
        """Deep copy of the stored bible in wire form."""
        bible = await self.get_bible(project_id)
        return copy.deepcopy(bible.to_wire())

    async def import_bible(self, project_id: str, incoming: Mapping[str, Any]) -> None:
        """Merge a (partial) bible dump through the regular upsert paths, in one write."""
        now = self._clock()

        def op(bible: Bible) -> Bible:
            entities = incoming.get("entities")
            if isinstance(entities, Mapping):
                candidates = [
                    {**e, "id": key} if isinstance(e, Mapping) else {"id": key}
                    for key, e in entities.items()
                ]
                bible = merge.upsert_entities(bible, candidates, self.quotas)
            threads = incoming.get("threads")
            if isinstance(threads, (list, tuple)):
                for t in threads:
                    bible = merge.upsert_thread(bible, t, now, self.quotas)
            return merge.merge_style(bible, incoming.get("style"))

        await self._apply(project_id, op)

    async def import_legacy_bucket(self, bucket: Mapping[str, Any]) -> list[str]:
        """Split an old single-bucket dump (``{projectId: bible}``) into per-project records."""
        if LEGACY_BUCKET_KEY in bucket and isinstance(bucket[LEGACY_BUCKET_KEY], Mapping):
            bucket = bucket[LEGACY_BUCKET_KEY]
        imported = []
        for project_id, raw in bucket.items():
            if not isinstance(raw, Mapping):
                logger.warning("Skipping legacy entry %r: not a bible record", project_id)
                continue
            bible = migrate(raw, str(project_id), self._clock(), self.quotas)
            await self.storage.set(bible.project_id, bible.to_wire())
            imported.append(bible.project_id)
        logger.info("Imported %d legacy bibles", len(imported))
        return imported

    async def list_project_ids(self) -> list[str]:
        return await self.storage.keys()

    async def clear_bible(self, project_id: str) -> None:
        await self.storage.delete(project_id)
        logger.info("Cleared bible %s", project_id)

    # ── Entities ─────────────────────────────────────────────

    async def upsert_entity(self, project_id: str, entity: Any) -> None:
        await self._apply(project_id, lambda b: merge.upsert_entity(b, entity, self.quotas))

    async def upsert_entities(self, project_id: str, entities: Iterable[Any]) -> None:
        """Merge a batch against one loaded snapshot and write once."""
        batch = list(entities)
        if not batch:
            return
        await self._apply(project_id, lambda b: merge.upsert_entities(b, batch, self.quotas))

    async def add_evidence(self, project_id: str, entity_id: str, evidence: Any) -> None:
        await self._apply(
            project_id, lambda b: merge.add_evidence(b, entity_id, evidence, self.quotas)
        )

    async def remove_entity(self, project_id: str, entity_id: str) -> None:
        await self._apply(project_id, lambda b: merge.remove_entity(b, entity_id))

    # ── Threads ──────────────────────────────────────────────

    async def upsert_thread(self, project_id: str, thread: Any) -> None:
        now = self._clock()
        await self._apply(project_id, lambda b: merge.upsert_thread(b, thread, now, self.quotas))

    async def close_thread(self, project_id: str, name: str) -> None:
        now = self._clock()
        await self._apply(project_id, lambda b: merge.close_thread(b, name, now))

    async def remove_thread(self, project_id: str, name: str) -> None:
        await self._apply(project_id, lambda b: merge.remove_thread(b, name))

    # ── Read-only views ──────────────────────────────────────

    async def search_bible(self, project_id: str, query: str) -> SearchResult:
        bible, _ = await self._load(project_id)
        return search(bible, query)

    async def get_snapshot_for_llm(
        self,
        project_id: str,
        max_entities: int | None = None,
        max_attrs_per_entity: int | None = None,
        max_threads: int | None = None,
        max_hooks: int | None = None,
    ) -> dict[str, Any]:
        """Bounded projection for model grounding; unset bounds use the configured defaults."""
        cfg = self.snapshot_config
        bible, _ = await self._load(project_id)
        return snapshot(
            bible,
            max_entities=cfg.max_entities if max_entities is None else max_entities,
            max_attrs_per_entity=(
                cfg.max_attrs_per_entity if max_attrs_per_entity is None else max_attrs_per_entity
            ),
            max_threads=cfg.max_threads if max_threads is None else max_threads,
            max_hooks=cfg.max_hooks if max_hooks is None else max_hooks,
        )
