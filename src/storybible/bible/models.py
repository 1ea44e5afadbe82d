"""Story Bible value types.

Every type here is a frozen dataclass. Merge and prune steps build new values
with ``dataclasses.replace`` instead of mutating a loaded aggregate, so two
holders of the same ``Bible`` never see each other's edits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Generic, Literal, TypeVar, Union

T = TypeVar("T")

SCHEMA_VERSION = 2

ThreadStatus = Literal["open", "closed"]


class EntityType(str, Enum):
    CHARACTER = "Character"
    LOCATION = "Location"
    RULE = "Rule"
    OBJECT = "Object"
    CONCEPT = "Concept"


@dataclass(frozen=True)
class Quotas:
    """Hard caps enforced after every mutation."""

    max_entities: int = 2000
    max_evidence_per_entity: int = 20
    max_threads: int = 500
    max_todos_per_thread: int = 40
    max_attr_values: int = 50


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """Result of a parse step. ``coerced`` is set when the input was not taken as-is."""

    value: T
    coerced: bool = False
    reason: str = ""


# ── Attribute values ─────────────────────────────────────────


@dataclass(frozen=True)
class Scalar:
    kind: ClassVar[str] = "scalar"

    value: str

    def to_wire(self) -> str:
        return self.value


@dataclass(frozen=True)
class AttrSet:
    """Ordered set of unique strings."""

    kind: ClassVar[str] = "set"

    values: tuple[str, ...] = ()

    def to_wire(self) -> list[str]:
        return list(self.values)


AttrValue = Union[Scalar, AttrSet]


# ── Entities ─────────────────────────────────────────────────


@dataclass(frozen=True)
class Evidence:
    span: tuple[int, int] | None = None
    quote: str | None = None
    chapter_id: str | None = None

    @property
    def dedup_key(self) -> tuple[str, tuple[int, int] | None, str]:
        return (self.chapter_id or "", self.span, (self.quote or "")[:80])

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.span is not None:
            out["span"] = list(self.span)
        if self.quote is not None:
            out["quote"] = self.quote
        if self.chapter_id is not None:
            out["chapterId"] = self.chapter_id
        return out


@dataclass(frozen=True)
class Entity:
    id: str
    type: EntityType
    attrs: dict[str, AttrValue] = field(default_factory=dict)
    evidence: tuple[Evidence, ...] = ()

    @property
    def name(self) -> str:
        return self.id.split(":", 1)[1]

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "attrs": {k: v.to_wire() for k, v in self.attrs.items()},
            "evidence": [e.to_wire() for e in self.evidence],
        }


# ── Threads ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Thread:
    name: str
    status: ThreadStatus = "open"
    notes: str | None = None
    hooks: tuple[float, ...] = ()
    todos: tuple[str, ...] = ()
    created_at: int | None = None
    updated_at: int | None = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "status": self.status}
        if self.notes is not None:
            out["notes"] = self.notes
        out["hooks"] = list(self.hooks)
        out["todos"] = list(self.todos)
        if self.created_at is not None:
            out["createdAt"] = self.created_at
        if self.updated_at is not None:
            out["updatedAt"] = self.updated_at
        return out


@dataclass(frozen=True)
class ThreadDelta:
    """Candidate thread update. ``None`` fields leave the stored value alone."""

    name: str
    status: ThreadStatus | None = None
    notes: str | None = None
    hooks: tuple[float, ...] = ()
    todos: tuple[str, ...] = ()


# ── Aggregate ────────────────────────────────────────────────


@dataclass(frozen=True)
class Bible:
    project_id: str
    schema_version: int = SCHEMA_VERSION
    updated_at: int = 0
    entities: dict[str, Entity] = field(default_factory=dict)
    threads: tuple[Thread, ...] = ()
    style: dict[str, Any] = field(default_factory=dict)
    # top-level keys this version does not know about, written back untouched
    extra: dict[str, Any] = field(default_factory=dict)

    def find_thread(self, name: str) -> int:
        """Index of the thread called ``name``, or -1."""
        for i, t in enumerate(self.threads):
            if t.name == name:
                return i
        return -1

    def to_wire(self) -> dict[str, Any]:
        return {
            **self.extra,
            "projectId": self.project_id,
            "schemaVersion": self.schema_version,
            "updatedAt": self.updated_at,
            "entities": {k: e.to_wire() for k, e in self.entities.items()},
            "threads": [t.to_wire() for t in self.threads],
            "style": dict(self.style),
        }


@dataclass(frozen=True)
class SearchResult:
    entities: list[Entity]
    threads: list[Thread]
    style: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return {
            "entities": [e.to_wire() for e in self.entities],
            "threads": [t.to_wire() for t in self.threads],
            "style": self.style,
        }
