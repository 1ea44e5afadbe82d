"""Quota enforcement and deterministic eviction.

``prune`` runs after every mutation and at the end of every load. Caps are
hard: excess is dropped silently, never raised.

- entities: the first ``max_entities`` in enumeration order are kept
- threads: the last ``max_threads`` are kept
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from storybible.bible.models import AttrSet, AttrValue, Bible, Entity, Evidence, Quotas, Thread
from storybible.bible.parse import dedupe, parse_hooks

logger = logging.getLogger(__name__)


def dedupe_evidence(items: Iterable[Evidence], cap: int) -> tuple[Evidence, ...]:
    """Dedup by (chapter, span, quote[:80]) and truncate. Earliest entries win."""
    seen = set()
    out: list[Evidence] = []
    for ev in items:
        if len(out) >= cap:
            break
        key = ev.dedup_key
        if key in seen:
            continue
        seen.add(key)
        out.append(ev)
    return tuple(out)


def clamp_todos(todos: Iterable[str], cap: int) -> tuple[str, ...]:
    return tuple(dedupe(todos)[:cap])


def clamp_hooks(hooks: Iterable[float]) -> tuple[float, ...]:
    return tuple(parse_hooks(list(hooks)))


def _clamp_attr(value: AttrValue, cap: int) -> AttrValue:
    if isinstance(value, AttrSet) and len(value.values) > cap:
        return AttrSet(value.values[:cap])
    return value


def _prune_entity(entity: Entity, quotas: Quotas) -> Entity:
    return replace(
        entity,
        attrs={k: _clamp_attr(v, quotas.max_attr_values) for k, v in entity.attrs.items()},
        evidence=dedupe_evidence(entity.evidence, quotas.max_evidence_per_entity),
    )


def _prune_thread(thread: Thread, quotas: Quotas) -> Thread:
    return replace(
        thread,
        todos=clamp_todos(thread.todos, quotas.max_todos_per_thread),
        hooks=clamp_hooks(thread.hooks),
    )


def prune(bible: Bible, quotas: Quotas) -> Bible:
    """Return a copy of ``bible`` that satisfies every cap."""
    items = list(bible.entities.items())
    if len(items) > quotas.max_entities:
        logger.info(
            "Evicting %d entities from %s (cap %d)",
            len(items) - quotas.max_entities,
            bible.project_id,
            quotas.max_entities,
        )
        items = items[: quotas.max_entities]
    entities = {eid: _prune_entity(e, quotas) for eid, e in items}

    names = set()
    threads: list[Thread] = []
    for t in bible.threads:
        if t.name in names:
            logger.warning("Duplicate thread %r in %s, keeping first", t.name, bible.project_id)
            continue
        names.add(t.name)
        threads.append(t)
    if len(threads) > quotas.max_threads:
        dropped = len(threads) - quotas.max_threads
        logger.info(
            "Evicting %d threads from %s (cap %d)", dropped, bible.project_id, quotas.max_threads
        )
        threads = threads[dropped:]

    return replace(
        bible,
        entities=entities,
        threads=tuple(_prune_thread(t, quotas) for t in threads),
    )
