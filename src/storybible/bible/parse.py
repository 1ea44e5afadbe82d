"""Coerce loosely-shaped input (extractor output, stored records, imports) into model values.

Nothing here rejects input. Unknown entity types become ``Concept``, missing
containers become empty, bad spans and hooks are dropped. Steps that have to
guess return a ``Parsed`` so callers can see that coercion happened.
"""

from __future__ import annotations

import copy
import json
import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from storybible.bible.models import (
    AttrSet,
    AttrValue,
    Bible,
    Entity,
    EntityType,
    Evidence,
    Parsed,
    Scalar,
    Thread,
    ThreadDelta,
    ThreadStatus,
)

logger = logging.getLogger(__name__)

_TYPES_BY_LOWER = {t.value.lower(): t for t in EntityType}
_WIRE_KEYS = frozenset({"projectId", "schemaVersion", "updatedAt", "entities", "threads", "style"})
_PREFIX_RE = re.compile(r"^([A-Za-z]+):(.*)$", re.DOTALL)


# ── Entity type & id ─────────────────────────────────────────


def parse_entity_type(raw: Any) -> Parsed[EntityType]:
    """Exact type name, else a case-insensitive name or ``"<type>:"`` prefix, else Concept."""
    if isinstance(raw, EntityType):
        return Parsed(raw)
    text = str(raw or "").strip()
    for t in EntityType:
        if text == t.value:
            return Parsed(t)
    head = text.split(":", 1)[0].lower()
    if head in _TYPES_BY_LOWER:
        return Parsed(_TYPES_BY_LOWER[head], coerced=True, reason=f"type {text!r} normalized")
    return Parsed(EntityType.CONCEPT, coerced=True, reason=f"unknown type {text!r}")


def split_id_prefix(raw_id: str) -> tuple[EntityType | None, str]:
    """Split ``"Character:Mercy"`` into its recognised type and the bare name."""
    m = _PREFIX_RE.match(raw_id)
    if m and m.group(1).lower() in _TYPES_BY_LOWER:
        return _TYPES_BY_LOWER[m.group(1).lower()], m.group(2).strip()
    return None, raw_id


def canonical_entity_id(raw_id: Any, etype: EntityType) -> Parsed[str | None]:
    """Return ``"<type>:<name>"``. An empty name gives ``None``."""
    text = str(raw_id or "").strip()
    prefix, name = split_id_prefix(text)
    if not name:
        return Parsed(None, coerced=True, reason="empty entity name")
    canonical = f"{etype.value}:{name}"
    if canonical == text:
        return Parsed(canonical)
    if prefix is None:
        return Parsed(canonical, coerced=True, reason="type prefix added")
    return Parsed(canonical, coerced=True, reason=f"prefix {text.split(':', 1)[0]!r} replaced")


# ── Attributes ───────────────────────────────────────────────


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def dedupe(items: Iterable[Any]) -> list[Any]:
    """Drop repeats, first occurrence wins."""
    seen = set()
    out = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def parse_attr_value(raw: Any, cap: int = 50) -> AttrValue | None:
    if raw is None:
        return None
    if isinstance(raw, (Scalar, AttrSet)):
        return raw
    if isinstance(raw, (list, tuple, set, frozenset)):
        values = dedupe(_to_str(v) for v in raw if v is not None and v != "")
        return AttrSet(tuple(values[:cap]))
    return Scalar(_to_str(raw))


def parse_attrs(raw: Any, cap: int = 50) -> dict[str, AttrValue]:
    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, AttrValue] = {}
    for key, value in raw.items():
        parsed = parse_attr_value(value, cap)
        if parsed is not None:
            out[str(key)] = parsed
    return out


# ── Evidence ─────────────────────────────────────────────────


def _parse_span(raw: Any) -> tuple[int, int] | None:
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        return None
    try:
        start, end = (float(x) for x in raw if not isinstance(x, bool))
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(start) and math.isfinite(end)):
        return None
    return int(start), int(end)


def parse_evidence(raw: Any) -> Evidence | None:
    if isinstance(raw, Evidence):
        return raw
    if not isinstance(raw, Mapping):
        return None
    quote = raw.get("quote")
    chapter = raw.get("chapterId", raw.get("chapter_id"))
    return Evidence(
        span=_parse_span(raw.get("span")),
        quote=None if quote is None else _to_str(quote),
        chapter_id=None if chapter is None else _to_str(chapter),
    )


def parse_evidence_list(raw: Any) -> list[Evidence]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [ev for ev in (parse_evidence(item) for item in raw) if ev is not None]


def parse_entity(raw: Any, key: str | None = None, cap: int = 50) -> Parsed[Entity | None]:
    """Parse a candidate entity. ``key`` is the id to fall back on (mapping key on import)."""
    if isinstance(raw, Entity):
        raw = raw.to_wire()
    if not isinstance(raw, Mapping):
        return Parsed(None, coerced=True, reason="entity is not a mapping")

    raw_id = str(raw.get("id") or key or "").strip()
    id_prefix, _ = split_id_prefix(raw_id)
    raw_type = raw.get("type")
    if raw_type:
        etype = parse_entity_type(raw_type)
        if etype.coerced and id_prefix is not None and etype.value is EntityType.CONCEPT:
            etype = Parsed(id_prefix, coerced=True, reason=f"type taken from id {raw_id!r}")
    elif id_prefix is not None:
        etype = Parsed(id_prefix, coerced=id_prefix.value != raw_id.split(":", 1)[0])
    else:
        etype = Parsed(EntityType.CONCEPT, coerced=True, reason="missing type")

    eid = canonical_entity_id(raw_id, etype.value)
    if eid.value is None:
        return Parsed(None, coerced=True, reason=eid.reason)

    entity = Entity(
        id=eid.value,
        type=etype.value,
        attrs=parse_attrs(raw.get("attrs"), cap),
        evidence=tuple(parse_evidence_list(raw.get("evidence"))),
    )
    reasons = [r for r in (etype.reason, eid.reason) if r]
    return Parsed(entity, coerced=etype.coerced or eid.coerced, reason="; ".join(reasons))


# ── Threads ──────────────────────────────────────────────────


def parse_hooks(raw: Any) -> list[float]:
    """Finite positions within [0, 1], deduplicated in order."""
    if not isinstance(raw, (list, tuple)):
        return []
    out = []
    for item in raw:
        if isinstance(item, bool):
            continue
        try:
            value = float(item)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value) and 0.0 <= value <= 1.0:
            out.append(value)
    return dedupe(out)


def parse_todos(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return dedupe(_to_str(t) for t in raw if t is not None)


def _parse_status(raw: Any) -> ThreadStatus | None:
    if raw == "closed":
        return "closed"
    if raw == "open":
        return "open"
    return None


def _parse_timestamp(raw: Any) -> int | None:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    return int(raw) if math.isfinite(raw) else None


def parse_thread_delta(raw: Any) -> ThreadDelta | None:
    """Parse a candidate thread update. An empty name gives ``None``."""
    if isinstance(raw, ThreadDelta):
        return raw if raw.name.strip() else None
    if isinstance(raw, Thread):
        raw = raw.to_wire()
    if not isinstance(raw, Mapping):
        return None
    name = _to_str(raw.get("name") or "").strip()
    if not name:
        return None
    notes = raw.get("notes")
    return ThreadDelta(
        name=name,
        status=_parse_status(raw.get("status")),
        notes=None if notes is None else _to_str(notes),
        hooks=tuple(parse_hooks(raw.get("hooks"))),
        todos=tuple(parse_todos(raw.get("todos"))),
    )


def parse_thread(raw: Any) -> Thread | None:
    """Parse a stored thread record."""
    if isinstance(raw, Thread):
        return raw
    if not isinstance(raw, Mapping):
        return None
    delta = parse_thread_delta(raw)
    if delta is None:
        return None
    return Thread(
        name=delta.name,
        status=delta.status or "open",
        notes=delta.notes,
        hooks=delta.hooks,
        todos=delta.todos,
        created_at=_parse_timestamp(raw.get("createdAt")),
        updated_at=_parse_timestamp(raw.get("updatedAt")),
    )


# ── Aggregate ────────────────────────────────────────────────


def bible_from_wire(raw: Mapping[str, Any], project_id: str, cap: int = 50) -> Bible:
    """Build a ``Bible`` from a stored record. Caps are applied later by ``prune``."""
    entities: dict[str, Entity] = {}
    raw_entities = raw.get("entities")
    if isinstance(raw_entities, Mapping):
        for key, value in raw_entities.items():
            parsed = parse_entity(value, key=str(key), cap=cap)
            if parsed.value is None:
                logger.debug("Dropped stored entity %r: %s", key, parsed.reason)
                continue
            if parsed.value.id in entities:
                logger.warning("Duplicate entity id %s in %s, keeping first", parsed.value.id, project_id)
                continue
            entities[parsed.value.id] = parsed.value

    threads: list[Thread] = []
    raw_threads = raw.get("threads")
    if isinstance(raw_threads, (list, tuple)):
        threads = [t for t in (parse_thread(item) for item in raw_threads) if t is not None]

    style = raw.get("style")
    version = raw.get("schemaVersion")
    return Bible(
        project_id=project_id,
        schema_version=version if isinstance(version, int) and not isinstance(version, bool) else 1,
        updated_at=_parse_timestamp(raw.get("updatedAt")) or 0,
        entities=entities,
        threads=tuple(threads),
        style=dict(style) if isinstance(style, Mapping) else {},
        extra={k: copy.deepcopy(v) for k, v in raw.items() if k not in _WIRE_KEYS},
    )
