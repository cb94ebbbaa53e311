"""MCP server status listing for ``mcp.list`` and ``mcp.warmup``."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codex_bridge.errors import RequestTimeoutError

if TYPE_CHECKING:
    from codex_bridge.runtime.process import AppServerRuntime

LIST_METHOD = "mcpServerStatus/list"
PAGE_LIMIT = 100
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"

_INVALID_ID_CHARS = re.compile(r"[^a-z0-9_-]")
_DASH_RUNS = re.compile(r"-{2,}")


@dataclass
class McpServer:
    name: str
    status: str = STATUS_CONNECTED
    tools: list[str] = field(default_factory=list)
    url: str | None = None
    transport: str = "stdio"


def normalize_server_id(name: str) -> str:
    """Lowercase ASCII alphanumerics, ``-`` and ``_``; everything else becomes ``-``."""
    lowered = "".join(ch.lower() if ch.isascii() else "-" for ch in name)
    compact = _DASH_RUNS.sub("-", _INVALID_ID_CHARS.sub("-", lowered)).strip("-")
    return compact or "server"


def unique_server_ids(names: list[str]) -> list[str]:
    """Ids in ``names`` order; repeated bases get ``-2``, ``-3``... suffixes.

    A suffixed id never reuses an id already handed out, even when another
    server's own name normalizes to it.
    """
    taken: set[str] = set()
    next_suffix: dict[str, int] = {}
    ids = []
    for name in names:
        base = normalize_server_id(name)
        candidate = base
        suffix = next_suffix.get(base, 1)
        while candidate in taken:
            suffix += 1
            candidate = f"{base}-{suffix}"
        next_suffix[base] = suffix
        taken.add(candidate)
        ids.append(candidate)
    return ids


def _tool_names(tools: Any) -> list[str]:
    if isinstance(tools, dict):
        names = [str(key) for key in tools]
    elif isinstance(tools, list):
        names = []
        for tool in tools:
            if isinstance(tool, str):
                names.append(tool)
            elif isinstance(tool, dict) and isinstance(tool.get("name"), str):
                names.append(tool["name"])
    else:
        names = []
    return sorted({name.strip() for name in names if name.strip()})


def parse_server_entry(entry: Any) -> McpServer | None:
    if not isinstance(entry, dict):
        return None
    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    auth_status = entry.get("authStatus")
    url = entry.get("url")
    transport = entry.get("transport")
    return McpServer(
        name=name.strip(),
        status=STATUS_DISCONNECTED if auth_status == "notLoggedIn" else STATUS_CONNECTED,
        tools=_tool_names(entry.get("tools")),
        url=url if isinstance(url, str) and url.strip() else None,
        transport=transport if isinstance(transport, str) and transport.strip() else "stdio",
    )


def _next_cursor(result: dict[str, Any]) -> str | None:
    cursor = result.get("nextCursor", result.get("next_cursor"))
    if isinstance(cursor, str) and cursor.strip():
        return cursor.strip()
    return None


async def fetch_servers(runtime: "AppServerRuntime", timeout_s: float) -> list[McpServer]:
    """Page through ``mcpServerStatus/list``; the first entry per name wins.

    ``timeout_s`` bounds the whole listing, not each page.
    """
    deadline = time.monotonic() + timeout_s
    servers: dict[str, McpServer] = {}
    cursor: str | None = None
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RequestTimeoutError(f"app-server request `{LIST_METHOD}` timed out after {timeout_s:g}s")
        result = await runtime.request(LIST_METHOD, {"limit": PAGE_LIMIT, "cursor": cursor}, timeout_s=remaining)
        result = result if isinstance(result, dict) else {}
        data = result.get("data")
        for entry in data if isinstance(data, list) else []:
            server = parse_server_entry(entry)
            if server is not None and server.name not in servers:
                servers[server.name] = server
        cursor = _next_cursor(result)
        if cursor is None:
            return list(servers.values())


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def list_servers(runtime: "AppServerRuntime", timeout_s: float) -> dict[str, Any]:
    started = time.monotonic()
    servers = sorted(await fetch_servers(runtime, timeout_s), key=lambda server: server.name)
    ids = unique_server_ids([server.name for server in servers])
    data = [
        {
            "id": server_id,
            "name": server.name,
            "transport": server.transport,
            "status": server.status,
            "tools": server.tools,
            "url": server.url,
        }
        for server_id, server in zip(ids, servers)
    ]
    return {"data": data, "total": len(data), "elapsedMs": _elapsed_ms(started)}


async def warmup_servers(runtime: "AppServerRuntime", timeout_s: float) -> dict[str, Any]:
    """Force the app-server to start its MCP servers and report which it knows about."""
    started = time.monotonic()
    names = sorted(server.name for server in await fetch_servers(runtime, timeout_s))
    return {"readyServers": names, "totalReady": len(names), "elapsedMs": _elapsed_ms(started)}
