"""Memory tools exposed to the assistant.

Each tool takes the raw payload the dispatch layer received, validates it into
a typed request, and runs the matching FridaySession operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable

from friday.errors import ConfigInvalidError
from friday.session import ToolResult
from friday.tools.requests import parse_request

if TYPE_CHECKING:
    from friday.session import FridaySession

MemoryTool = Callable[[dict | None], Awaitable[ToolResult]]


def get_memory_tools(session: FridaySession) -> dict[str, MemoryTool]:
    """Return a dict of tool_name -> async callable(payload) -> ToolResult."""

    def bind(operation: str, handler) -> MemoryTool:
        async def tool(payload: dict | None = None) -> ToolResult:
            try:
                request = parse_request(operation, payload)
            except ConfigInvalidError as e:
                return ToolResult(ok=False, summary=f"Invalid {operation} request: {e}")
            return await handler(request)

        tool.__name__ = f"friday_{operation}"
        tool.__doc__ = handler.__doc__
        return tool

    return {
        "friday-setup": bind("setup", session.setup),
        "friday-search": bind("search", session.search),
        "friday-sync": bind("sync", session.sync),
        "friday-context": bind("context", session.context),
        "friday-greeting": bind("greeting", session.greeting),
        "friday-record": bind("record", session.record),
    }
