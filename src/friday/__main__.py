"""Entry point: python -m friday <command> [args]

- setup [web|api|cli]          Initialize memory in the current project
- search <query...>            Staged search across memory
- sync [direction] [--force]   Reconcile git memory with the Upstash cache
- context                      Project profile + memory stats
- greeting                     Short status: profile, mode, cache health
- record <category> <title> <body> [tag...]
"""

from __future__ import annotations

import asyncio
import logging
import sys

from friday.config import load_config
from friday.errors import ConfigInvalidError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _payload(cmd: str, args: list[str]) -> dict:
    if cmd == "setup":
        return {"projectType": args[0]} if args else {}
    if cmd == "search":
        return {"query": " ".join(args)}
    if cmd == "sync":
        payload: dict = {"force": "--force" in args}
        rest = [a for a in args if a != "--force"]
        if rest:
            payload["direction"] = rest[0]
        return payload
    if cmd == "record":
        if len(args) < 3:
            return {}
        return {"category": args[0], "title": args[1], "body": args[2], "tags": args[3:]}
    return {}


async def _run(cmd: str, args: list[str]) -> int:
    from friday.session import FridaySession
    from friday.tools.memory_tools import get_memory_tools

    config = load_config()
    _setup_logging(config.log_level)

    session = FridaySession(config)
    try:
        tool = get_memory_tools(session)[f"friday-{cmd}"]
        result = await tool(_payload(cmd, args))
    finally:
        await session.close()

    print(result.summary)
    return 0 if result.ok else 1


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "context"

    if cmd not in ("setup", "search", "sync", "context", "greeting", "record"):
        print("Usage: python -m friday [setup|search|sync|context|greeting|record] [args]")
        print("  setup [web|api|cli]          — Initialize memory in this project")
        print("  search <query>               — Search memory")
        print("  sync [direction] [--force]   — Reconcile git memory and the cache")
        print("  context                      — Show project profile and stats")
        print("  greeting                     — Show a short status line")
        print("  record <category> <title> <body> [tags...]")
        sys.exit(1)

    try:
        code = asyncio.run(_run(cmd, sys.argv[2:]))
    except ConfigInvalidError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        code = 2
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
