"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from storybible.__main__ import main


@pytest.fixture(autouse=True)
def bible_root(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for key in ("STORYBIBLE_SQLITE_PATH", "STORYBIBLE_REMOTE_URL", "STORYBIBLE_MAX_ENTITIES"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("STORYBIBLE_BACKEND", "markdown")
    monkeypatch.setenv("STORYBIBLE_ROOT", str(tmp_path / "bibles"))
    return tmp_path / "bibles"


class TestMain:
    def test_unknown_command(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["frobnicate"])
        assert exc.value.code == 1
        assert "Usage:" in capsys.readouterr().out

    def test_wrong_arity(self, capsys):
        with pytest.raises(SystemExit):
            main(["search", "p1"])
        assert "Usage:" in capsys.readouterr().out

    def test_import_list_search(self, tmp_path: Path, bible_root: Path, capsys):
        dump = tmp_path / "dump.json"
        dump.write_text(
            json.dumps(
                {
                    "entities": {"Mercy": {"type": "Character", "attrs": {"age": "30"}}},
                    "threads": [{"name": "Who lit the fire?"}],
                }
            ),
            encoding="utf-8",
        )

        main(["import", "p1", str(dump)])
        assert "Imported into p1" in capsys.readouterr().out
        assert (bible_root / "p1.md").exists()

        main(["list"])
        assert capsys.readouterr().out.split() == ["p1"]

        main(["search", "p1", "mercy"])
        found = json.loads(capsys.readouterr().out)
        assert [e["id"] for e in found["entities"]] == ["Character:Mercy"]

        main(["snapshot", "p1"])
        assert '- "Who lit the fire?" (open)' in capsys.readouterr().out

    def test_import_legacy_and_clear(self, tmp_path: Path, capsys):
        dump = tmp_path / "bucket.json"
        dump.write_text(json.dumps({"a": {"entities": {}}, "b": {"style": {"x": 1}}}), encoding="utf-8")

        main(["import-legacy", str(dump)])
        assert sorted(capsys.readouterr().out.split()) == ["a", "b"]

        main(["clear", "a"])
        capsys.readouterr()
        main(["list"])
        assert capsys.readouterr().out.split() == ["b"]

    def test_export(self, capsys):
        main(["export", "p9"])
        data = json.loads(capsys.readouterr().out)
        assert data["projectId"] == "p9"
        assert data["entities"] == {}
