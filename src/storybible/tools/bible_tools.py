"""Agent tools for Story Bible access.

These functions are designed to be exposed as tools to the AI agent,
allowing it to consult and grow the bible of the project it is working on.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from storybible.bible.projection import render_grounding

if TYPE_CHECKING:
    from storybible.bible.store import BibleStore


def get_bible_tools(store: BibleStore, project_id: str) -> dict[str, Callable[..., Awaitable[str]]]:
    """Return a dict of tool_name -> async callable bound to one project."""

    async def search_bible(query: str = "") -> str:
        """Search entities and threads by free text (case-insensitive)."""
        result = await store.search_bible(project_id, query)
        lines = [f"- {e.id}: {json.dumps(e.to_wire()['attrs'], ensure_ascii=False)}" for e in result.entities]
        lines += [f'- thread "{t.name}" ({t.status})' for t in result.threads]
        return "\n".join(lines) or f"(nothing in the bible matches {query!r})"

    async def read_snapshot() -> str:
        """Read the compact grounding view of the whole bible."""
        snap = await store.get_snapshot_for_llm(project_id)
        return render_grounding(snap)

    async def record_entity(id: str, type: str, attrs: dict | None = None, quote: str = "") -> str:
        """Record or extend an entity. Conflicting attribute values are kept side by side."""
        evidence = [{"quote": quote}] if quote else []
        await store.upsert_entity(
            project_id, {"id": id, "type": type, "attrs": attrs or {}, "evidence": evidence}
        )
        return f"Recorded {id} ({type})"

    async def record_thread(name: str, notes: str | None = None, todos: list[str] | None = None) -> str:
        """Open or update a narrative thread."""
        if not name.strip():
            return "Thread name is required"
        await store.upsert_thread(project_id, {"name": name, "notes": notes, "todos": todos or []})
        return f'Thread "{name.strip()}" updated'

    async def close_thread(name: str) -> str:
        """Mark a narrative thread as resolved."""
        await store.close_thread(project_id, name)
        return f'Thread "{name}" closed'

    return {
        "search_bible": search_bible,
        "read_snapshot": read_snapshot,
        "record_entity": record_entity,
        "record_thread": record_thread,
        "close_thread": close_thread,
    }
