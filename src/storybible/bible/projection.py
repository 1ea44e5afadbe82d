"""Read-only views of a Bible: free-text search and the bounded LLM snapshot."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any

from storybible.bible.models import Bible, Entity, SearchResult, Thread

logger = logging.getLogger(__name__)

CONTEXT_WARN_THRESHOLD = 6000


def _entity_haystack(e: Entity) -> str:
    attrs = json.dumps({k: v.to_wire() for k, v in e.attrs.items()}, ensure_ascii=False)
    return f"{e.id} {e.type.value} {attrs}".lower()


def _thread_haystack(t: Thread) -> str:
    return f"{t.name} {t.notes or ''} {' '.join(t.todos)}".lower()


def search(bible: Bible, query: str) -> SearchResult:
    """Case-insensitive substring match. An empty query matches everything."""
    q = (query or "").strip().lower()
    entities = [e for e in bible.entities.values() if not q or q in _entity_haystack(e)]
    threads = [t for t in bible.threads if not q or q in _thread_haystack(t)]
    return SearchResult(entities=entities, threads=threads, style=copy.deepcopy(bible.style))


def snapshot(
    bible: Bible,
    max_entities: int = 60,
    max_attrs_per_entity: int = 6,
    max_threads: int = 20,
    max_hooks: int = 6,
) -> dict[str, Any]:
    """Size-bounded projection for grounding a model. Evidence is never included."""
    ranked = sorted(bible.entities.values(), key=lambda e: len(e.evidence), reverse=True)
    entities = []
    for e in ranked[: max(0, max_entities)]:
        keys = list(e.attrs)[: max(0, max_attrs_per_entity)]
        entities.append(
            {"id": e.id, "type": e.type.value, "attrs": {k: e.attrs[k].to_wire() for k in keys}}
        )

    start = max(0, len(bible.threads) - max(0, max_threads))
    threads = [
        {
            "name": t.name,
            "status": t.status,
            "notes": t.notes,
            "hooks": list(t.hooks[: max(0, max_hooks)]),
        }
        for t in bible.threads[start:]
    ]
    return {
        "entities": entities,
        "threads": threads,
        "style": copy.deepcopy(bible.style),
        "updatedAt": bible.updated_at,
    }


def render_grounding(snap: dict[str, Any]) -> str:
    """Render a snapshot as the compact ENTITIES/THREADS/STYLE block sent to a model."""
    ents = "\n".join(
        f"{e['id']}: {json.dumps(e.get('attrs') or {}, ensure_ascii=False)[:200]}"
        for e in snap.get("entities", [])[:30]
    )
    lines = []
    for t in snap.get("threads", [])[:12]:
        line = f'- "{t["name"]}" ({t["status"]})'
        if t.get("notes"):
            line += f" - {str(t['notes'])[:160]}"
        lines.append(line)
    style = json.dumps(snap["style"], ensure_ascii=False)[:400] if snap.get("style") else ""

    context = (
        f"ENTITIES:\n{ents or '(none)'}\n\n"
        f"THREADS:\n{chr(10).join(lines) or '(none)'}\n\n"
        f"STYLE:\n{style or '(none)'}"
    )
    if len(context) > CONTEXT_WARN_THRESHOLD:
        logger.warning("Grounding context %d chars (threshold %d)", len(context), CONTEXT_WARN_THRESHOLD)
    return context
