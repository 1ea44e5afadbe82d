"""Entry point: python -m storybible <command> [args]

- list                          Known project ids
- show <project>                Full bible as JSON
- search <project> <query>      Free-text search
- snapshot <project>            Grounding block sent to the model
- export <project>              Same as show (backup format)
- import <project> <file>       Merge a JSON dump into a project
- import-legacy <file>          Split an old single-bucket dump per project
- clear <project>               Delete a project's bible
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from storybible.config import StoryBibleConfig, load_config

USAGE = """Usage: python -m storybible <command> [args]
  list                       — list project ids
  show <project>             — print the full bible
  search <project> <query>   — free-text search
  snapshot <project>         — print the grounding block
  export <project>           — print a JSON dump
  import <project> <file>    — merge a JSON dump
  import-legacy <file>       — split an old single-bucket dump
  clear <project>            — delete a project's bible"""

# command -> number of positional arguments
_ARITY = {
    "list": 0,
    "show": 1,
    "search": 2,
    "snapshot": 1,
    "export": 1,
    "import": 2,
    "import-legacy": 1,
    "clear": 1,
}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _dump(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


async def _run(config: StoryBibleConfig, cmd: str, args: list[str]) -> None:
    from storybible.bible.projection import render_grounding
    from storybible.bible.store import BibleStore

    store = BibleStore.from_config(config)
    try:
        if cmd == "list":
            for project_id in await store.list_project_ids():
                print(project_id)
        elif cmd in ("show", "export"):
            _dump(await store.export_bible(args[0]))
        elif cmd == "search":
            result = await store.search_bible(args[0], args[1])
            _dump(result.to_wire())
        elif cmd == "snapshot":
            print(render_grounding(await store.get_snapshot_for_llm(args[0])))
        elif cmd == "import":
            data = json.loads(Path(args[1]).read_text(encoding="utf-8"))
            await store.import_bible(args[0], data)
            print(f"Imported into {args[0]}")
        elif cmd == "import-legacy":
            data = json.loads(Path(args[0]).read_text(encoding="utf-8"))
            for project_id in await store.import_legacy_bucket(data):
                print(project_id)
        elif cmd == "clear":
            await store.clear_bible(args[0])
            print(f"Cleared {args[0]}")
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    cmd = argv[0] if argv else ""
    args = argv[1:]

    if cmd not in _ARITY or len(args) != _ARITY[cmd]:
        print(USAGE)
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    asyncio.run(_run(config, cmd, args))


if __name__ == "__main__":
    main()
