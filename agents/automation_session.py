"""Live browser automation sessions used to validate and repair selectors.

``AutomationSession`` owns the connect/disconnect lifecycle and the action
dispatch; backends only implement the individual browser operations.
``MCPAutomationSession`` drives a Playwright MCP server over stdio.
"""

import json
import logging
import time
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from models.scenario import ExecutionResult

logger = logging.getLogger(__name__)

NOT_CONNECTED = "Not connected to automation backend"
DEFAULT_WAIT_MS = 1000

# Action name -> session method that performs it.
ACTION_HANDLERS = {
    "goto": "navigate",
    "click": "click",
    "fill": "fill",
    "expect": "assert_visible",
    "wait": "wait_for",
    "type": "type_text",
}


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def wait_timeout_ms(data: Optional[str]) -> int:
    try:
        return int(float(data)) if data else DEFAULT_WAIT_MS
    except ValueError:
        return DEFAULT_WAIT_MS


def _elapsed_ms(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Whole milliseconds from a reported duration; non-numeric values give ``default``."""
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip().removesuffix("ms")
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _better_selector(candidate: Any, target: str) -> Optional[str]:
    if not isinstance(candidate, str):
        return None
    candidate = candidate.strip()
    if not candidate or candidate == target:
        return None
    return candidate


def interpret_action_reply(reply: Optional[str], target: str, default_ms: int) -> ExecutionResult:
    """Read a backend reply to an action call.

    JSON replies may carry ``success``, ``improvedSelector``, ``executionTime``
    and ``error``; anything else counts as a plain success.
    """
    if not reply:
        return ExecutionResult(success=True, execution_time_ms=default_ms)
    try:
        parsed = json.loads(reply)
    except json.JSONDecodeError:
        return ExecutionResult(success=True, execution_time_ms=default_ms)
    if not isinstance(parsed, dict):
        return ExecutionResult(success=True, execution_time_ms=default_ms)
    success = parsed.get("success", True) is not False
    return ExecutionResult(
        success=success,
        improved_selector=_better_selector(parsed.get("improvedSelector"), target),
        execution_time_ms=_elapsed_ms(parsed.get("executionTime"), default_ms),
        error=None if success else str(parsed.get("error") or "Backend reported failure"),
    )


def interpret_validation_reply(reply: Optional[str], target: str) -> ExecutionResult:
    """Read a backend reply to a selector validation.

    A reply that is not JSON is taken verbatim as the improved selector.
    """
    if not reply:
        return ExecutionResult(success=True)
    try:
        parsed = json.loads(reply)
    except json.JSONDecodeError:
        return ExecutionResult(success=True, improved_selector=_better_selector(reply, target))
    if not isinstance(parsed, dict):
        return ExecutionResult(success=True, improved_selector=_better_selector(reply, target))
    valid = parsed.get("isValid", parsed.get("success", True)) is not False
    if not valid:
        return ExecutionResult(success=False, error=str(parsed.get("error") or f"Selector did not resolve: {target}"))
    return ExecutionResult(
        success=True,
        improved_selector=_better_selector(parsed.get("improvedSelector"), target),
        execution_time_ms=_elapsed_ms(parsed.get("executionTime")),
    )


class AutomationSession:
    """A single live connection to a browser automation backend.

    Sessions are single use: once ``disconnect()`` has run, ``connect()``
    refuses to reopen them.
    """

    backend_name = "automation"

    def __init__(self):
        self.state = SessionState.DISCONNECTED
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    async def connect(self) -> bool:
        if self._closed:
            logger.warning(f"{self.backend_name} session was already disconnected and cannot be reused")
            return False
        if self.is_connected:
            return True

        self.state = SessionState.CONNECTING
        logger.info(f"Connecting to {self.backend_name} backend...")
        try:
            await self._open()
        except Exception as e:
            logger.warning(f"Failed to connect to {self.backend_name} backend: {e}")
            self.state = SessionState.DISCONNECTED
            await self._release()
            return False

        self.state = SessionState.CONNECTED
        logger.info(f"Connected to {self.backend_name} backend")
        return True

    async def disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._release()
        self.state = SessionState.DISCONNECTED
        logger.info(f"Disconnected from {self.backend_name} backend")

    async def _release(self) -> None:
        try:
            await self._close()
        except Exception as e:
            logger.warning(f"Error while closing {self.backend_name} backend: {e}")

    async def execute_step(self, action: str, target: str, data: Optional[str] = None) -> ExecutionResult:
        if not self.is_connected:
            logger.warning(f"Skipping {action} on {target}: session not connected")
            return ExecutionResult(success=False, error=NOT_CONNECTED)

        handler_name = ACTION_HANDLERS.get(action)
        if handler_name is None:
            logger.warning(f"Unknown action: {action}")
            return ExecutionResult(success=False, error=f"Unknown action: {action}")

        logger.info(f"Executing step: {action} on {target}")
        started = time.monotonic()
        try:
            result = await getattr(self, handler_name)(target, data)
        except Exception as e:
            logger.warning(f"{action} on {target} failed: {e}")
            return ExecutionResult(success=False, error=str(e))

        if result.execution_time_ms is None:
            elapsed = int((time.monotonic() - started) * 1000)
            result = result.model_copy(update={"execution_time_ms": elapsed})
        return result

    async def validate_selector(self, target: str) -> ExecutionResult:
        if not self.is_connected:
            return ExecutionResult(success=False, error=NOT_CONNECTED)

        logger.info(f"Validating selector: {target}")
        try:
            return await self._validate(target)
        except Exception as e:
            logger.warning(f"Validation of {target} failed: {e}")
            return ExecutionResult(success=False, error=str(e))

    # Backend hooks

    async def _open(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    async def _validate(self, selector: str) -> ExecutionResult:
        raise NotImplementedError

    async def navigate(self, url: str, data: Optional[str] = None) -> ExecutionResult:
        raise NotImplementedError

    async def click(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        raise NotImplementedError

    async def fill(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        raise NotImplementedError

    async def assert_visible(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        raise NotImplementedError

    async def wait_for(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        raise NotImplementedError

    async def type_text(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        raise NotImplementedError


class MCPAutomationSession(AutomationSession):
    """Session backed by a Playwright MCP server spoken to over stdio."""

    backend_name = "Playwright MCP"

    NAVIGATE_TOOL = "playwright_navigate"
    CLICK_TOOL = "playwright_click"
    FILL_TOOL = "playwright_fill"
    EXPECT_TOOL = "playwright_expect"
    WAIT_TOOL = "playwright_wait"
    TYPE_TOOL = "playwright_type"
    VALIDATE_TOOL = "playwright_validate_selector"

    def __init__(self, command: str = "npx", args: Optional[List[str]] = None, env: Optional[Dict[str, str]] = None):
        super().__init__()
        self.server_params = StdioServerParameters(
            command=command,
            args=list(args) if args is not None else ["@playwright/mcp@latest"],
            env=env,
        )
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None
        self.available_tools: List[str] = []

    async def _open(self) -> None:
        self._stack = AsyncExitStack()
        read_stream, write_stream = await self._stack.enter_async_context(stdio_client(self.server_params))
        self._session = await self._stack.enter_async_context(ClientSession(read_stream, write_stream))
        await self._session.initialize()

        tools = await self._session.list_tools()
        self.available_tools = [tool.name for tool in tools.tools]
        logger.debug(f"Available MCP tools: {self.available_tools}")

    async def _close(self) -> None:
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()

    async def _call_tool(self, name: str, arguments: Dict[str, Any]) -> Optional[str]:
        """Call an MCP tool and return the text of its first content item."""
        result = await self._session.call_tool(name, arguments=arguments)
        text = None
        for item in result.content or []:
            if getattr(item, "type", None) == "text":
                text = item.text
                break
        # mcp 1.x names the flag isError, later releases is_error.
        is_error = getattr(result, "is_error", None)
        if is_error is None:
            is_error = getattr(result, "isError", False)
        if is_error:
            raise RuntimeError(text or f"{name} returned an error")
        return text

    async def _validate(self, selector: str) -> ExecutionResult:
        reply = await self._call_tool(self.VALIDATE_TOOL, {"selector": selector, "context": "validation"})
        return interpret_validation_reply(reply, selector)

    async def navigate(self, url: str, data: Optional[str] = None) -> ExecutionResult:
        reply = await self._call_tool(self.NAVIGATE_TOOL, {"url": url})
        return interpret_action_reply(reply, url, 1000)

    async def click(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        reply = await self._call_tool(self.CLICK_TOOL, {"selector": selector})
        return interpret_action_reply(reply, selector, 500)

    async def fill(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        reply = await self._call_tool(self.FILL_TOOL, {"selector": selector, "value": data or ""})
        return interpret_action_reply(reply, selector, 500)

    async def assert_visible(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        reply = await self._call_tool(self.EXPECT_TOOL, {"selector": selector})
        return interpret_action_reply(reply, selector, 300)

    async def wait_for(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        timeout = wait_timeout_ms(data)
        reply = await self._call_tool(self.WAIT_TOOL, {"selector": selector, "timeout": timeout})
        return interpret_action_reply(reply, selector, timeout)

    async def type_text(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        reply = await self._call_tool(self.TYPE_TOOL, {"selector": selector, "text": data or ""})
        return interpret_action_reply(reply, selector, 500)
