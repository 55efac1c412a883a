"""Shared fixtures: an in-process fake of the Upstash Redis REST API."""

from __future__ import annotations

import asyncio
import fnmatch
import re
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from friday.memory.cache import CacheCredentials, CacheTier
from friday.memory.store import DurableStore

TOKEN = "test-token"


def _redis_glob(pattern: str) -> str:
    """Translate Redis backslash escapes into fnmatch character classes."""
    return re.sub(r"\\(.)", lambda m: f"[{m.group(1)}]", pattern)


class FakeUpstash:
    """Implements the handful of Redis commands the cache tier uses."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.commands: list[list[str]] = []
        self.delay = 0.0
        self.fail = False
        self.fail_on: set[str] = set()
        self.url = ""

    def command_names(self) -> list[str]:
        return [c[0] for c in self.commands]

    async def handle(self, request: web.Request) -> web.Response:
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return web.json_response({"error": "Unauthorized"}, status=401)
        if self.delay:
            await asyncio.sleep(self.delay)
        command = await request.json()
        self.commands.append(command)
        if self.fail or command[0].upper() in self.fail_on:
            return web.json_response({"error": "ERR service unavailable"}, status=500)

        name, args = command[0].upper(), command[1:]
        if name == "PING":
            result = "PONG"
        elif name == "SET":
            self.data[args[0]] = args[1]
            result = "OK"
        elif name == "GET":
            result = self.data.get(args[0])
        elif name == "MGET":
            result = [self.data.get(k) for k in args]
        elif name == "DEL":
            result = sum(1 for k in args if self.data.pop(k, None) is not None)
        elif name == "SCAN":
            pattern = args[args.index("MATCH") + 1] if "MATCH" in args else "*"
            pattern = _redis_glob(pattern)
            result = ["0", [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]]
        else:
            return web.json_response({"error": f"ERR unknown command {name}"}, status=400)
        return web.json_response({"result": result})


@pytest_asyncio.fixture
async def upstash():
    fake = FakeUpstash()
    app = web.Application()
    app.router.add_post("/", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.url = str(server.make_url("/"))
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def cache(upstash: FakeUpstash):
    tier = CacheTier(CacheCredentials(url=upstash.url, token=TOKEN, timeout=1.0))
    yield tier
    await tier.close()


@pytest.fixture
def store(tmp_path: Path) -> DurableStore:
    s = DurableStore(tmp_path / ".github" / "memory")
    s.initialize()
    return s
