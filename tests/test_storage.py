"""Tests for the storage backends."""

from __future__ import annotations

from pathlib import Path

import aiohttp
import pytest
from aiohttp import web
from aiohttp import test_utils

from storybible.config import StorageConfig
from storybible.storage import build_storage
from storybible.storage.base import StorageAdapter
from storybible.storage.markdown import MarkdownStorage
from storybible.storage.memory import MemoryStorage
from storybible.storage.remote import RemoteStorage
from storybible.storage.sqlite import SqliteStorage

RECORD = {
    "projectId": "doc-1",
    "schemaVersion": 2,
    "updatedAt": 1718000000000,
    "entities": {
        "Location:Harbor": {"id": "Location:Harbor", "type": "Location", "attrs": {}, "evidence": []},
        "Character:Mercy": {
            "id": "Character:Mercy",
            "type": "Character",
            "attrs": {"motivation": ["guilt", "revenge"], "age": "30", "note": "yes"},
            "evidence": [{"span": [3, 11], "quote": "I did it: for her", "chapterId": "c1"}],
        },
    },
    "threads": [{"name": "Who lit the fire?", "status": "open", "hooks": [0.5], "todos": []}],
    "style": {"pacingHint": "slow", "dialogueRatioTarget": 0.4, "voiceTells": ["um"]},
}


class TestMemoryStorage:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        storage = MemoryStorage()
        await storage.set("doc-1", RECORD)
        assert await storage.get("doc-1") == RECORD
        assert await storage.keys() == ["doc-1"]

    @pytest.mark.asyncio
    async def test_copies(self):
        storage = MemoryStorage()
        record = {"style": {"x": 1}}
        await storage.set("doc-1", record)
        record["style"]["x"] = 2
        got = await storage.get("doc-1")
        got["style"]["x"] = 3
        assert (await storage.get("doc-1"))["style"]["x"] == 1

    @pytest.mark.asyncio
    async def test_delete(self):
        storage = MemoryStorage()
        await storage.set("doc-1", RECORD)
        await storage.delete("doc-1")
        await storage.delete("doc-1")
        assert await storage.get("doc-1") is None

    def test_protocol(self):
        assert isinstance(MemoryStorage(), StorageAdapter)


class TestMarkdownStorage:
    @pytest.mark.asyncio
    async def test_round_trip_survives_restart(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path)
        await storage.set("doc-1", RECORD)
        reopened = MarkdownStorage(tmp_path)
        got = await reopened.get("doc-1")
        assert got == RECORD
        assert list(got["entities"]) == ["Location:Harbor", "Character:Mercy"]
        assert await reopened.keys() == ["doc-1"]

    @pytest.mark.asyncio
    async def test_file_layout(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path)
        await storage.set("doc-1", RECORD)
        text = (tmp_path / "doc-1.md").read_text(encoding="utf-8")
        assert text.startswith("---\nproject: doc-1\n")
        assert "# doc-1" in text

    @pytest.mark.asyncio
    async def test_missing_key(self, tmp_path: Path):
        assert await MarkdownStorage(tmp_path).get("nope") is None

    @pytest.mark.asyncio
    async def test_slug_collision(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path)
        await storage.set("my/doc", {"style": {"a": 1}})
        await storage.set("mydoc", {"style": {"b": 2}})
        assert (tmp_path / "mydoc.md").exists()
        assert (tmp_path / "mydoc-2.md").exists()
        reopened = MarkdownStorage(tmp_path)
        assert (await reopened.get("my/doc"))["style"] == {"a": 1}
        assert (await reopened.get("mydoc"))["style"] == {"b": 2}

    @pytest.mark.asyncio
    async def test_backups_limited(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path, keep_versions=3)
        for i in range(8):
            await storage.set("doc-1", {"updatedAt": i})
        versions = list((tmp_path / ".versions").glob("doc-1-*.md"))
        assert 1 <= len(versions) <= 3
        assert (await storage.get("doc-1"))["updatedAt"] == 7

    @pytest.mark.asyncio
    async def test_backups_scoped_to_project(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path, keep_versions=2)
        await storage.set("p1", {"updatedAt": 0})
        await storage.set("p1/", {"updatedAt": 0})  # slugs to p1, lands in p1-2.md
        assert (tmp_path / "p1-2.md").exists()
        for i in range(4):
            await storage.set("p1/", {"updatedAt": i})
        for i in range(4):
            await storage.set("p1", {"updatedAt": i})

        versions = tmp_path / ".versions"
        own = [f for f in versions.glob("p1-*.md") if not f.name.startswith("p1-2-")]
        collided = list(versions.glob("p1-2-*.md"))
        assert len(own) == 2
        assert len(collided) == 2

    @pytest.mark.asyncio
    async def test_write_replaces_file_whole(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path)
        await storage.set("doc-1", RECORD)
        await storage.set("doc-1", {**RECORD, "updatedAt": 5})
        assert list(tmp_path.glob("*.tmp")) == []
        assert sorted(p.name for p in tmp_path.glob("*.md")) == ["doc-1.md"]
        reopened = MarkdownStorage(tmp_path)
        assert (await reopened.get("doc-1"))["updatedAt"] == 5

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path: Path):
        storage = MarkdownStorage(tmp_path)
        await storage.set("doc-1", RECORD)
        await storage.delete("doc-1")
        await storage.delete("doc-1")
        assert not (tmp_path / "doc-1.md").exists()
        assert await storage.get("doc-1") is None
        assert await storage.keys() == []

    @pytest.mark.asyncio
    async def test_unreadable_files_skipped(self, tmp_path: Path):
        (tmp_path / "broken.md").write_text("---\n: [bad\n---\n", encoding="utf-8")
        (tmp_path / "notes.md").write_text("just notes", encoding="utf-8")
        storage = MarkdownStorage(tmp_path)
        assert await storage.keys() == []


class TestSqliteStorage:
    @pytest.mark.asyncio
    async def test_round_trip_and_update(self, tmp_path: Path):
        storage = SqliteStorage(tmp_path / "db" / "bible.db")
        await storage.set("doc-1", RECORD)
        await storage.set("doc-2", {"style": {}})
        await storage.set("doc-1", {**RECORD, "updatedAt": 5})
        reopened = SqliteStorage(tmp_path / "db" / "bible.db")
        assert (await reopened.get("doc-1"))["updatedAt"] == 5
        assert await reopened.keys() == ["doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path: Path):
        storage = SqliteStorage(tmp_path / "bible.db")
        await storage.set("doc-1", RECORD)
        await storage.delete("doc-1")
        await storage.delete("doc-1")
        assert await storage.get("doc-1") is None
        assert await storage.keys() == []


def _document_app(fail_writes: bool = False) -> web.Application:
    docs: dict[str, dict] = {}

    async def list_docs(request):
        return web.json_response(list(docs))

    async def get_doc(request):
        key = request.match_info["key"]
        if key not in docs:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(docs[key])

    async def put_doc(request):
        if fail_writes:
            return web.json_response({"error": "boom"}, status=500)
        docs[request.match_info["key"]] = await request.json()
        return web.json_response({"ok": True})

    async def delete_doc(request):
        if docs.pop(request.match_info["key"], None) is None:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response({"ok": True})

    app = web.Application()
    app.router.add_get("/bibles", list_docs)
    app.router.add_get("/bibles/{key}", get_doc)
    app.router.add_put("/bibles/{key}", put_doc)
    app.router.add_delete("/bibles/{key}", delete_doc)
    return app


class TestRemoteStorage:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        server = test_utils.TestServer(_document_app())
        await server.start_server()
        storage = RemoteStorage(f"http://{server.host}:{server.port}/", timeout=5)
        try:
            assert await storage.get("doc-1") is None
            await storage.set("doc-1", RECORD)
            assert await storage.get("doc-1") == RECORD
            assert await storage.keys() == ["doc-1"]
            await storage.delete("doc-1")
            await storage.delete("doc-1")
            assert await storage.keys() == []
        finally:
            await storage.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        server = test_utils.TestServer(_document_app(fail_writes=True))
        await server.start_server()
        storage = RemoteStorage(f"http://{server.host}:{server.port}")
        try:
            with pytest.raises(aiohttp.ClientResponseError):
                await storage.set("doc-1", RECORD)
        finally:
            await storage.close()
            await server.close()


class TestBuildStorage:
    def test_backends(self, tmp_path: Path):
        assert build_storage(StorageConfig(backend="memory")).name == "memory"
        assert build_storage(StorageConfig(backend="markdown", root=tmp_path / "md")).name == "markdown"
        assert build_storage(StorageConfig(backend="sqlite", sqlite_path=tmp_path / "b.db")).name == "sqlite"
        remote = build_storage(StorageConfig(backend="remote", remote_url="http://localhost:1"))
        assert remote.name == "remote"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            build_storage(StorageConfig(backend="floppy"))

    def test_remote_needs_url(self):
        with pytest.raises(ValueError):
            build_storage(StorageConfig(backend="remote"))
