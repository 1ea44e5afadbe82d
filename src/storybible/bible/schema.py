"""Load-time schema migration.

Stored records are upgraded one version at a time, then parsed and pruned, so
whatever comes out of ``migrate`` already satisfies every cap. Running it
twice on the same record gives the same result.

Versions:
    1  original layout; entity ids may carry lower-case or mismatched prefixes
    2  entity ids are always ``"<Type>:<Name>"`` with the prefix equal to ``type``
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from storybible.bible.models import SCHEMA_VERSION, Bible, Entity, Quotas
from storybible.bible.merge import merge_entity
from storybible.bible.parse import bible_from_wire, parse_entity
from storybible.bible.quota import prune

logger = logging.getLogger(__name__)


def _v1_to_v2(raw: dict[str, Any]) -> dict[str, Any]:
    """Re-key entities by canonical id, folding collisions through the merge engine."""
    raw_entities = raw.get("entities")
    if not isinstance(raw_entities, Mapping):
        return raw
    quotas = Quotas()
    merged: dict[str, Entity] = {}
    for key, value in raw_entities.items():
        parsed = parse_entity(value, key=str(key), cap=quotas.max_attr_values)
        if parsed.value is None:
            continue
        eid = parsed.value.id
        if eid in merged:
            logger.info("Folding legacy entity %r into %s", key, eid)
        merged[eid] = merge_entity(merged.get(eid), parsed.value, quotas)
    return {**raw, "entities": {eid: e.to_wire() for eid, e in merged.items()}}


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _v1_to_v2,
}


def default_bible(project_id: str, now: int) -> Bible:
    return Bible(project_id=project_id, schema_version=SCHEMA_VERSION, updated_at=now)


def upgrade(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Apply registered transforms in increasing order. Unknown future versions pass through."""
    record = dict(raw)
    version = record.get("schemaVersion")
    if not isinstance(version, int) or isinstance(version, bool):
        record["schemaVersion"] = version = 1
    if version > SCHEMA_VERSION:
        logger.debug("Record at schema v%d is newer than v%d, passing through", version, SCHEMA_VERSION)
        return record
    while version < SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is not None:
            record = step(record)
        version += 1
        record["schemaVersion"] = version
    return record


def migrate(raw: Mapping[str, Any] | None, project_id: str, now: int, quotas: Quotas) -> Bible:
    """Turn a stored record (or nothing) into a normalized Bible for ``project_id``."""
    if raw is None:
        return default_bible(project_id, now)
    if not isinstance(raw, Mapping):
        logger.warning("Stored record for %s is not a mapping, starting fresh", project_id)
        return default_bible(project_id, now)
    record = upgrade(raw)
    bible = bible_from_wire(record, project_id, cap=quotas.max_attr_values)
    return prune(bible, quotas)
