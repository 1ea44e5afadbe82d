"""Markdown file storage: one file per project, record kept in YAML frontmatter.

Layout:
    <root>/
    ├── <project-slug>.md      # frontmatter: project, updated, bible
    └── .versions/             # timestamped backups (10 per project)

Files are matched to projects by the frontmatter ``project`` field, not by
file name, so two keys that slug the same way get separate files. An
in-memory index (built once at startup, updated on writes) avoids rescanning
the directory.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path

import frontmatter

from storybible.storage.base import Record

logger = logging.getLogger(__name__)


class MarkdownStorage:
    """Adapter over a directory of frontmatter markdown files."""

    def __init__(self, root: Path, keep_versions: int = 10) -> None:
        self.root = root
        self.keep_versions = keep_versions
        self._index: dict[str, Path] = {}
        self._ensure_initialized()
        self._build_index()

    @property
    def name(self) -> str:
        return "markdown"

    # ── Initialization & index ───────────────────────────────

    def _ensure_initialized(self) -> None:
        """Ensure base directories exist. Idempotent."""
        (self.root / ".versions").mkdir(parents=True, exist_ok=True)

    def _build_index(self) -> None:
        """Scan root once, map project keys to files."""
        self._index.clear()
        for md_file in sorted(self.root.glob("*.md")):
            project = self._parse_frontmatter(md_file).get("project")
            if project:
                self._index[str(project)] = md_file

    def _parse_frontmatter(self, path: Path) -> dict:
        """Parse YAML frontmatter; unreadable files are skipped during indexing."""
        try:
            post = frontmatter.load(str(path))
            return dict(post.metadata)
        except Exception as e:
            logger.warning("Skipping unreadable bible file %s: %s", path, e)
            return {}

    # ── File naming & paths ──────────────────────────────────

    def _slugify(self, key: str) -> str:
        """Minimal slug: strip illegal chars, spaces to hyphens, keep CJK."""
        slug = re.sub(r'[<>:"/\\|?*\n\r\t]', "", key)
        slug = slug.strip().replace(" ", "-").lstrip(".")
        return slug or "unnamed"

    def _resolve_path(self, key: str) -> Path:
        """Existing file for ``key``, or a fresh non-colliding path."""
        if key in self._index:
            return self._index[key]
        slug = self._slugify(key)
        path = self.root / f"{slug}.md"
        counter = 2
        while path.exists():
            path = self.root / f"{slug}-{counter}.md"
            counter += 1
        return path

    def _backup(self, path: Path) -> None:
        """Copy to .versions/, keeping at most ``keep_versions`` per project."""
        if not path.exists():
            return
        versions_dir = self.root / ".versions"
        versions_dir.mkdir(exist_ok=True)
        ts = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        (versions_dir / f"{path.stem}-{ts}.md").write_text(
            path.read_text(encoding="utf-8"), encoding="utf-8"
        )
        # the stem alone would also match "<stem>-2" collision files
        own = re.compile(rf"{re.escape(path.stem)}-\d{{8}}T\d{{12}}\.md")
        old = sorted(f for f in versions_dir.glob(f"{path.stem}-*.md") if own.fullmatch(f.name))
        for f in old[: -self.keep_versions]:
            f.unlink()

    # ── Adapter API ──────────────────────────────────────────

    async def get(self, key: str) -> Record | None:
        path = self._index.get(key)
        if path is None or not path.exists():
            return None
        post = frontmatter.load(str(path))
        record = post.metadata.get("bible")
        return dict(record) if isinstance(record, dict) else None

    async def set(self, key: str, record: Record) -> None:
        path = self._resolve_path(key)
        self._backup(path)
        post = frontmatter.Post(
            f"# {key}\n",
            project=key,
            updated=datetime.now().isoformat(timespec="seconds"),
            bible=record,
        )
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(frontmatter.dumps(post, sort_keys=False) + "\n", encoding="utf-8")
        os.replace(tmp, path)
        self._index[key] = path
        logger.debug("Wrote bible %s to %s", key, path.name)

    async def delete(self, key: str) -> None:
        path = self._index.pop(key, None)
        if path is None or not path.exists():
            return
        self._backup(path)
        path.unlink()
        logger.info("Deleted bible %s", key)

    async def keys(self) -> list[str]:
        return list(self._index)
