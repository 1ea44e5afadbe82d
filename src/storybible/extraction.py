"""Boundary with the extraction pipeline.

Model output claiming to be entities/threads is clamped here before it
reaches the store: bounded counts, bounded string lengths, whitelisted types.
Anything that isn't shaped right is dropped, never raised.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from storybible.bible.models import EntityType

if TYPE_CHECKING:
    from storybible.bible.store import BibleStore

logger = logging.getLogger(__name__)

MAX_ENTITIES = 40
MAX_THREADS = 30
MAX_EVIDENCE = 6
ID_CHARS = 120
QUOTE_CHARS = 240
NAME_CHARS = 140
NOTES_CHARS = 400

_TYPES = {t.value for t in EntityType}


@dataclass
class ExtractionResult:
    entities: list[dict[str, Any]] = field(default_factory=list)
    threads: list[dict[str, Any]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.entities and not self.threads


def _clean_entity(e: Any) -> dict[str, Any]:
    e = e if isinstance(e, Mapping) else {}
    evidence = e.get("evidence")
    return {
        "id": str(e.get("id") or "")[:ID_CHARS],
        "type": e.get("type") if e.get("type") in _TYPES else EntityType.CONCEPT.value,
        "attrs": dict(e["attrs"]) if isinstance(e.get("attrs"), Mapping) else {},
        "evidence": [
            {"quote": str((ev.get("quote") if isinstance(ev, Mapping) else None) or "")[:QUOTE_CHARS]}
            for ev in evidence[:MAX_EVIDENCE]
        ]
        if isinstance(evidence, list)
        else [],
    }


def _clean_thread(t: Any) -> dict[str, Any]:
    t = t if isinstance(t, Mapping) else {}
    out = {
        "name": str(t.get("name") or "")[:NAME_CHARS],
        "status": "closed" if t.get("status") == "closed" else "open",
    }
    # empty notes would wipe what the thread already has
    if t.get("notes"):
        out["notes"] = str(t["notes"])[:NOTES_CHARS]
    return out


def sanitize_extraction(payload: Any) -> ExtractionResult:
    """Clamp an extractor payload (mapping or JSON text) to safe candidate lists."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("Extraction payload is not JSON: %s", e)
            return ExtractionResult()
    if not isinstance(payload, Mapping):
        return ExtractionResult()

    entities = payload.get("entities")
    threads = payload.get("threads")
    return ExtractionResult(
        entities=[_clean_entity(e) for e in entities[:MAX_ENTITIES]] if isinstance(entities, list) else [],
        threads=[_clean_thread(t) for t in threads[:MAX_THREADS]] if isinstance(threads, list) else [],
    )


async def ingest_extraction(store: BibleStore, project_id: str, payload: Any) -> ExtractionResult:
    """Sanitize ``payload`` and merge it into the project's bible."""
    result = sanitize_extraction(payload)
    if result.empty:
        return result
    await store.upsert_entities(project_id, result.entities)
    for thread in result.threads:
        await store.upsert_thread(project_id, thread)
    logger.info(
        "Ingested %d entities, %d threads into %s",
        len(result.entities),
        len(result.threads),
        project_id,
    )
    return result
