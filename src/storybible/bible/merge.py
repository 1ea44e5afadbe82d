"""Union-merge of candidate entities and threads into a Bible.

Every function takes a ``Bible`` and returns a new one. When nothing changes
the input object itself is returned, which the store uses to skip a write.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from typing import Any

from storybible.bible.models import (
    AttrSet,
    AttrValue,
    Bible,
    Entity,
    Evidence,
    Quotas,
    Scalar,
    Thread,
)
from storybible.bible.parse import dedupe, parse_entity, parse_evidence, parse_thread_delta
from storybible.bible.quota import clamp_hooks, clamp_todos, dedupe_evidence

logger = logging.getLogger(__name__)


# ── Attribute values ─────────────────────────────────────────


def _values(v: AttrValue) -> tuple[str, ...]:
    if isinstance(v, AttrSet):
        return v.values
    return (v.value,) if v.value else ()


def _union(existing: AttrValue, new: AttrValue, cap: int) -> AttrValue:
    return AttrSet(tuple(dedupe(_values(existing) + _values(new))[:cap]))


def _merge_scalars(existing: Scalar, new: Scalar, cap: int) -> AttrValue:
    if not new.value:
        return existing
    if existing.value and existing.value != new.value:
        return AttrSet((existing.value, new.value))
    return new


_MERGERS: dict[tuple[str, str], Callable[[Any, Any, int], AttrValue]] = {
    ("scalar", "scalar"): _merge_scalars,
    ("scalar", "set"): _union,
    ("set", "scalar"): _union,
    ("set", "set"): _union,
}


def merge_attr_value(existing: AttrValue | None, new: AttrValue, cap: int = 50) -> AttrValue:
    """Merge one attribute slot.

    A set on either side gives the ordered union (existing first). Two different
    non-empty scalars become a two-element set. Otherwise the new value fills
    the slot, but an empty scalar never overwrites a present one.
    """
    if existing is None:
        return new
    return _MERGERS[existing.kind, new.kind](existing, new, cap)


def merge_attrs(
    existing: Mapping[str, AttrValue], delta: Mapping[str, AttrValue], cap: int = 50
) -> dict[str, AttrValue]:
    out = dict(existing)
    for key, value in delta.items():
        out[key] = merge_attr_value(out.get(key), value, cap)
    return out


def merge_evidence(
    existing: Iterable[Evidence], new: Iterable[Evidence], cap: int = 20
) -> tuple[Evidence, ...]:
    return dedupe_evidence([*existing, *new], cap)


def merge_entity(prev: Entity | None, delta: Entity, quotas: Quotas) -> Entity:
    if prev is None:
        prev = Entity(id=delta.id, type=delta.type)
    return Entity(
        id=delta.id,
        type=delta.type,
        attrs=merge_attrs(prev.attrs, delta.attrs, quotas.max_attr_values),
        evidence=merge_evidence(prev.evidence, delta.evidence, quotas.max_evidence_per_entity),
    )


# ── Entity operations ────────────────────────────────────────


def upsert_entity(bible: Bible, candidate: Any, quotas: Quotas) -> Bible:
    return upsert_entities(bible, [candidate], quotas)


def upsert_entities(bible: Bible, candidates: Iterable[Any], quotas: Quotas) -> Bible:
    """Merge every candidate into one copy of ``bible``."""
    entities = dict(bible.entities)
    changed = False
    for candidate in candidates:
        parsed = parse_entity(candidate, cap=quotas.max_attr_values)
        if parsed.value is None:
            logger.debug("Skipped entity candidate: %s", parsed.reason)
            continue
        if parsed.coerced:
            logger.debug("Coerced entity %s: %s", parsed.value.id, parsed.reason)
        delta = parsed.value
        entities[delta.id] = merge_entity(entities.get(delta.id), delta, quotas)
        changed = True
    if not changed:
        return bible
    return replace(bible, entities=entities)


def add_evidence(bible: Bible, entity_id: str, evidence: Any, quotas: Quotas) -> Bible:
    """Attach one evidence entry to an existing entity; unknown ids are ignored."""
    current = bible.entities.get(entity_id)
    ev = parse_evidence(evidence)
    if current is None or ev is None:
        return bible
    entities = dict(bible.entities)
    entities[entity_id] = replace(
        current,
        evidence=merge_evidence(current.evidence, [ev], quotas.max_evidence_per_entity),
    )
    return replace(bible, entities=entities)


def remove_entity(bible: Bible, entity_id: str) -> Bible:
    if entity_id not in bible.entities:
        return bible
    entities = dict(bible.entities)
    del entities[entity_id]
    return replace(bible, entities=entities)


# ── Thread operations ────────────────────────────────────────


def upsert_thread(bible: Bible, candidate: Any, now: int, quotas: Quotas) -> Bible:
    """Merge a thread by exact name. Names never change; rename is remove + upsert."""
    delta = parse_thread_delta(candidate)
    if delta is None:
        logger.debug("Skipped thread candidate without a name")
        return bible

    i = bible.find_thread(delta.name)
    base = bible.threads[i] if i >= 0 else Thread(name=delta.name, status="open", created_at=now)
    merged = replace(
        base,
        status=delta.status or base.status,
        notes=delta.notes if delta.notes is not None else base.notes,
        hooks=clamp_hooks([*base.hooks, *delta.hooks]),
        todos=clamp_todos([*base.todos, *delta.todos], quotas.max_todos_per_thread),
        updated_at=now,
    )

    threads = list(bible.threads)
    if i >= 0:
        threads[i] = merged
    else:
        threads.append(merged)
    return replace(bible, threads=tuple(threads))


def close_thread(bible: Bible, name: str, now: int) -> Bible:
    i = bible.find_thread(name)
    if i < 0:
        return bible
    threads = list(bible.threads)
    threads[i] = replace(threads[i], status="closed", updated_at=now)
    return replace(bible, threads=tuple(threads))


def remove_thread(bible: Bible, name: str) -> Bible:
    i = bible.find_thread(name)
    if i < 0:
        return bible
    return replace(bible, threads=bible.threads[:i] + bible.threads[i + 1 :])


# ── Style ────────────────────────────────────────────────────


def merge_style(bible: Bible, style: Any) -> Bible:
    """Shallow merge; incoming keys win."""
    if not isinstance(style, Mapping) or not style:
        return bible
    return replace(bible, style={**bible.style, **style})
