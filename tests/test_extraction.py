"""Tests for the extraction boundary."""

from __future__ import annotations

import json

import pytest

from storybible import extraction
from storybible.bible.models import AttrSet
from storybible.bible.store import BibleStore
from storybible.extraction import ingest_extraction, sanitize_extraction
from storybible.storage.memory import MemoryStorage


class TestSanitize:
    def test_counts_clamped(self):
        payload = {
            "entities": [{"id": f"e{i}"} for i in range(100)],
            "threads": [{"name": f"t{i}"} for i in range(100)],
        }
        result = sanitize_extraction(payload)
        assert len(result.entities) == extraction.MAX_ENTITIES
        assert len(result.threads) == extraction.MAX_THREADS

    def test_strings_clamped(self):
        payload = {
            "entities": [{"id": "x" * 500, "evidence": [{"quote": "q" * 500}] * 10}],
            "threads": [{"name": "n" * 500, "notes": "z" * 1000}],
        }
        result = sanitize_extraction(payload)
        entity = result.entities[0]
        assert len(entity["id"]) == extraction.ID_CHARS
        assert len(entity["evidence"]) == extraction.MAX_EVIDENCE
        assert all(len(ev["quote"]) == extraction.QUOTE_CHARS for ev in entity["evidence"])
        assert len(result.threads[0]["name"]) == extraction.NAME_CHARS
        assert len(result.threads[0]["notes"]) == extraction.NOTES_CHARS

    def test_unknown_type_becomes_concept(self):
        result = sanitize_extraction({"entities": [{"id": "a", "type": "Spaceship"}, {"id": "b", "type": "Location"}]})
        assert [e["type"] for e in result.entities] == ["Concept", "Location"]

    def test_thread_status_and_notes(self):
        result = sanitize_extraction(
            {"threads": [{"name": "a", "status": "closed"}, {"name": "b", "status": "weird", "notes": ""}]}
        )
        assert result.threads == [
            {"name": "a", "status": "closed"},
            {"name": "b", "status": "open"},
        ]

    def test_json_text(self):
        text = json.dumps({"entities": [{"id": "Mercy", "type": "Character"}]})
        result = sanitize_extraction(text)
        assert result.entities[0]["id"] == "Mercy"
        assert result.threads == []

    def test_bad_payloads(self):
        assert sanitize_extraction("{not json").empty
        assert sanitize_extraction(["a list"]).empty
        assert sanitize_extraction({"entities": "nope", "threads": 3}).empty

    def test_garbage_items_normalized(self):
        result = sanitize_extraction({"entities": [7, {"id": "a", "attrs": "x", "evidence": ["q"]}]})
        assert result.entities[0] == {"id": "", "type": "Concept", "attrs": {}, "evidence": []}
        assert result.entities[1]["attrs"] == {}
        assert result.entities[1]["evidence"] == [{"quote": ""}]


class TestIngest:
    @pytest.mark.asyncio
    async def test_merges_into_store(self):
        store = BibleStore(MemoryStorage())
        await store.upsert_entity("p1", {"id": "Mercy", "type": "Character", "attrs": {"motivation": "guilt"}})
        payload = {
            "entities": [
                {"id": "Mercy", "type": "Character", "attrs": {"motivation": "revenge"}},
                {"id": "", "type": "Character"},
            ],
            "threads": [{"name": "Who lit the fire?", "notes": "Arson"}],
        }
        result = await ingest_extraction(store, "p1", payload)
        assert len(result.entities) == 2

        bible = await store.get_bible("p1")
        assert list(bible.entities) == ["Character:Mercy"]
        assert bible.entities["Character:Mercy"].attrs["motivation"] == AttrSet(("guilt", "revenge"))
        assert bible.threads[0].name == "Who lit the fire?"
        assert bible.threads[0].notes == "Arson"

    @pytest.mark.asyncio
    async def test_empty_payload_writes_nothing(self):
        store = BibleStore(MemoryStorage())
        result = await ingest_extraction(store, "p1", "garbage")
        assert result.empty
        assert await store.list_project_ids() == []
