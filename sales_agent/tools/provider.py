"""
Tool provider client.

The storefront's tools (catalog search, delivery calendar, freight,
notifications) and its guideline prompts live on an MCP server. This
module wraps the MCP client session behind a small interface the
orchestrator depends on, so tests can swap in a scripted provider.

The SSE session can go stale between turns (server restart, idle
timeout). Errors that look like a dead session trigger one forced
reconnect and one retry before surfacing as ToolProviderError.
"""

import asyncio
import json
import logging
import re
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

from mcp import ClientSession
from mcp.client.sse import sse_client

from sales_agent.config import settings

logger = logging.getLogger(__name__)

STALE_SESSION_MARKERS = ("initialize", "not connected", "connection closed", "32602", "invalid request")

_LEADING_JSON_RE = re.compile(r"^\s*```json\s*\n(.*?)\n```\s*(.*)$", re.DOTALL)


class ToolProviderError(Exception):
    """A tool server request failed, or the tool itself reported an error."""


@dataclass(frozen=True)
class ToolSpec:
    """A tool as advertised by the server."""
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }


@dataclass(frozen=True)
class ToolOutput:
    """Tool result carrying a machine-readable and a human-readable form."""
    data: Any
    humanized: Optional[str]
    raw: str


ToolResult = Union[str, ToolOutput]


class ToolProvider(Protocol):
    async def list_tools(self) -> list[ToolSpec]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult: ...

    async def get_prompt(self, name: str) -> str: ...


def should_retry(exc: BaseException) -> bool:
    """True when the error message indicates a stale or uninitialized session."""
    message = str(exc).lower()
    return any(marker in message for marker in STALE_SESSION_MARKERS)


def parse_tool_text(text: str) -> ToolOutput:
    """
    Split tool text into its structured and humanized parts.

    Tools answer either with plain text, or with a fenced ```json block
    followed by a human-readable rendering of the same data.
    """
    match = _LEADING_JSON_RE.match(text)
    if match:
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            data = None
        if data is not None:
            return ToolOutput(data=data, humanized=match.group(2).strip() or None, raw=text)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        data = text
    return ToolOutput(data=data, humanized=text, raw=text)


def normalize_tool_result(result: ToolResult) -> str:
    """Flatten a tool result into the single text payload appended to context."""
    if isinstance(result, str):
        return result
    if result.humanized:
        return result.humanized
    if result.raw:
        return result.raw
    return json.dumps(result.data, ensure_ascii=False, default=str)


class MCPToolProvider:
    """
    MCP client over SSE with lazy connect and single-retry reconnect.

    Usage:
        provider = MCPToolProvider()
        tools = await provider.list_tools()
        result = await provider.call_tool("consultarCatalogo", {"termo": "flores"})
        await provider.aclose()
    """

    def __init__(self, server_url: str = settings.tool_provider.server_url) -> None:
        self._server_url = server_url
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None
        self._connect_lock = asyncio.Lock()

    async def _ensure_session(self, force: bool = False) -> ClientSession:
        async with self._connect_lock:
            if force:
                await self._close()
            if self._session is None:
                stack = AsyncExitStack()
                try:
                    read, write = await stack.enter_async_context(sse_client(self._server_url))
                    session = await stack.enter_async_context(ClientSession(read, write))
                    await session.initialize()
                except Exception as exc:
                    await stack.aclose()
                    raise ToolProviderError(f"Cannot connect to tool server {self._server_url}: {exc}") from exc
                self._stack, self._session = stack, session
                logger.info("Connected to tool server at %s", self._server_url)
            return self._session

    async def _close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception as exc:
            logger.warning("Error while closing tool server session: %s", exc)

    async def aclose(self) -> None:
        async with self._connect_lock:
            await self._close()

    async def _request(self, label: str, operation):
        session = await self._ensure_session()
        try:
            return await operation(session)
        except ToolProviderError:
            raise
        except Exception as exc:
            if not should_retry(exc):
                raise ToolProviderError(f"{label} failed: {exc}") from exc
            logger.warning("Tool server session stale during %s, reconnecting: %s", label, exc)

        session = await self._ensure_session(force=True)
        try:
            return await operation(session)
        except ToolProviderError:
            raise
        except Exception as exc:
            raise ToolProviderError(f"{label} failed after reconnect: {exc}") from exc

    # ------------------------------------------------------------------ #
    #  Tool provider interface
    # ------------------------------------------------------------------ #

    async def list_tools(self) -> list[ToolSpec]:
        async def operation(session: ClientSession) -> list[ToolSpec]:
            result = await session.list_tools()
            return [
                ToolSpec(name=tool.name, description=tool.description or "", input_schema=tool.inputSchema or {})
                for tool in result.tools
            ]

        return await self._request("list_tools", operation)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        async def operation(session: ClientSession) -> ToolResult:
            result = await session.call_tool(name, arguments=arguments)
            text = "\n".join(
                item.text for item in result.content if getattr(item, "type", None) == "text"
            )
            if result.isError:
                raise ToolProviderError(text or f"Tool {name} reported an error")
            return parse_tool_text(text)

        logger.info("Calling tool %s", name)
        return await self._request(f"call_tool({name})", operation)

    async def get_prompt(self, name: str) -> str:
        async def operation(session: ClientSession) -> str:
            result = await session.get_prompt(name)
            parts = []
            for message in result.messages:
                text = getattr(message.content, "text", None)
                if text:
                    parts.append(text)
            return "\n\n".join(parts)

        return await self._request(f"get_prompt({name})", operation)
