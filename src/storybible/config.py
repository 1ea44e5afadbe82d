"""Configuration loading from environment variables and storybible.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from storybible.bible.models import Quotas

_HOME_DIR = Path.home() / ".storybible"
_CONFIG_FILENAME = "storybible.toml"


@dataclass
class StorageConfig:
    """Where bibles are persisted."""

    backend: str = "markdown"
    root: Path = _HOME_DIR / "bibles"
    keep_versions: int = 10
    sqlite_path: Path = _HOME_DIR / "bible.db"
    remote_url: str = ""
    remote_token: str = ""
    timeout: int = 30


@dataclass
class SnapshotConfig:
    """Default bounds for the LLM snapshot."""

    max_entities: int = 60
    max_attrs_per_entity: int = 6
    max_threads: int = 20
    max_hooks: int = 6


@dataclass
class StoryBibleConfig:
    """Top-level configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    quotas: Quotas = field(default_factory=Quotas)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> StoryBibleConfig:
    """Load configuration from environment variables and optional storybible.toml.

    Priority: environment variables > storybible.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.storybible/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _HOME_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    quota_data = file_data.get("quotas", {})
    snapshot_data = file_data.get("snapshot", {})
    defaults = Quotas()

    config = StoryBibleConfig(
        storage=StorageConfig(
            backend=os.getenv("STORYBIBLE_BACKEND", storage_data.get("backend", "markdown")),
            root=Path(os.getenv("STORYBIBLE_ROOT", storage_data.get("root", str(_HOME_DIR / "bibles")))),
            keep_versions=int(storage_data.get("keep_versions", 10)),
            sqlite_path=Path(
                os.getenv(
                    "STORYBIBLE_SQLITE_PATH", storage_data.get("sqlite_path", str(_HOME_DIR / "bible.db"))
                )
            ),
            remote_url=os.getenv("STORYBIBLE_REMOTE_URL", storage_data.get("remote_url", "")),
            remote_token=os.getenv("STORYBIBLE_REMOTE_TOKEN", storage_data.get("remote_token", "")),
            timeout=int(os.getenv("STORYBIBLE_TIMEOUT", storage_data.get("timeout", 30))),
        ),
        quotas=Quotas(
            max_entities=int(
                os.getenv("STORYBIBLE_MAX_ENTITIES", quota_data.get("max_entities", defaults.max_entities))
            ),
            max_evidence_per_entity=int(
                quota_data.get("max_evidence_per_entity", defaults.max_evidence_per_entity)
            ),
            max_threads=int(
                os.getenv("STORYBIBLE_MAX_THREADS", quota_data.get("max_threads", defaults.max_threads))
            ),
            max_todos_per_thread=int(
                quota_data.get("max_todos_per_thread", defaults.max_todos_per_thread)
            ),
            max_attr_values=int(quota_data.get("max_attr_values", defaults.max_attr_values)),
        ),
        snapshot=SnapshotConfig(
            max_entities=int(snapshot_data.get("max_entities", 60)),
            max_attrs_per_entity=int(snapshot_data.get("max_attrs_per_entity", 6)),
            max_threads=int(snapshot_data.get("max_threads", 20)),
            max_hooks=int(snapshot_data.get("max_hooks", 6)),
        ),
        log_level=os.getenv("STORYBIBLE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
