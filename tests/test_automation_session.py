"""Tests for the automation session lifecycle, dispatch and reply handling."""

import json
from types import SimpleNamespace

import pytest
from mcp.types import CallToolResult, TextContent

from agents.automation_session import (
    MCPAutomationSession,
    SessionState,
    interpret_action_reply,
    interpret_validation_reply,
    wait_timeout_ms,
)
from agents.browser_agent import alternative_selectors


class FakeClientSession:
    def __init__(self, replies=None, errors=()):
        self.replies = replies or {}
        self.errors = set(errors)
        self.calls = []

    async def call_tool(self, name, arguments=None):
        self.calls.append((name, arguments))
        text = self.replies.get(name, "")
        return CallToolResult(
            content=[TextContent(type="text", text=text)] if text else [],
            isError=name in self.errors,
        )


def _connected_mcp_session(client):
    session = MCPAutomationSession()
    session._session = client
    session.state = SessionState.CONNECTED
    return session


@pytest.mark.asyncio
async def test_failed_connect_leaves_session_disconnected(scripted_session):
    session = scripted_session(connect_ok=False)

    assert await session.connect() is False
    assert session.state is SessionState.DISCONNECTED

    await session.disconnect()
    await session.disconnect()
    assert session.disconnect_calls == 2


@pytest.mark.asyncio
async def test_disconnect_is_safe_without_connect(scripted_session):
    session = scripted_session()

    await session.disconnect()

    assert session.state is SessionState.DISCONNECTED


@pytest.mark.asyncio
async def test_session_cannot_be_reused_after_disconnect(scripted_session):
    session = scripted_session()
    assert await session.connect() is True
    assert session.is_connected

    await session.disconnect()

    assert await session.connect() is False
    result = await session.execute_step("click", "#login")
    assert result.success is False


@pytest.mark.asyncio
async def test_execute_step_before_connect_fails_softly(scripted_session):
    session = scripted_session()

    result = await session.execute_step("click", "#login")
    validation = await session.validate_selector("#login")

    assert result.success is False
    assert validation.success is False
    assert session.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["hover", "select", "drag"])
async def test_unrecognized_action_returns_failure(scripted_session, action):
    session = scripted_session()
    await session.connect()

    result = await session.execute_step(action, "#menu")

    assert result.success is False
    assert action in result.error


@pytest.mark.asyncio
async def test_execute_step_dispatches_by_action(scripted_session):
    session = scripted_session()
    await session.connect()

    for action in ("goto", "click", "fill", "expect", "wait", "type"):
        result = await session.execute_step(action, "#x", "v")
        assert result.success is True

    assert [call[0] for call in session.calls] == ["goto", "click", "fill", "expect", "wait", "type"]


@pytest.mark.asyncio
async def test_validate_selector_exception_becomes_failure(scripted_session):
    session = scripted_session(raising={"#broken"})
    await session.connect()

    result = await session.validate_selector("#broken")

    assert result.success is False
    assert "crashed" in result.error


@pytest.mark.asyncio
async def test_mcp_session_calls_fill_tool_with_value():
    client = FakeClientSession(replies={"playwright_fill": json.dumps({"success": True, "executionTime": 42})})
    session = _connected_mcp_session(client)

    result = await session.execute_step("fill", "#user", "bob")

    assert client.calls == [("playwright_fill", {"selector": "#user", "value": "bob"})]
    assert result.success is True
    assert result.execution_time_ms == 42


@pytest.mark.asyncio
async def test_mcp_session_tool_error_is_failure():
    client = FakeClientSession(replies={"playwright_click": "element not found"}, errors={"playwright_click"})
    session = _connected_mcp_session(client)

    result = await session.execute_step("click", "#missing")

    assert result.success is False
    assert "element not found" in result.error


@pytest.mark.asyncio
async def test_mcp_session_reads_snake_case_error_flag():
    class SnakeCaseClient(FakeClientSession):
        async def call_tool(self, name, arguments=None):
            self.calls.append((name, arguments))
            return SimpleNamespace(content=[TextContent(type="text", text="detached")], is_error=True)

    session = _connected_mcp_session(SnakeCaseClient())

    result = await session.execute_step("click", "#gone")

    assert result.success is False
    assert "detached" in result.error


@pytest.mark.asyncio
async def test_mcp_validate_selector_reads_improved_selector():
    reply = json.dumps({"isValid": True, "improvedSelector": "[data-testid=login]"})
    session = _connected_mcp_session(FakeClientSession(replies={"playwright_validate_selector": reply}))

    result = await session.validate_selector("#login")

    assert result.success is True
    assert result.improved_selector == "[data-testid=login]"


@pytest.mark.asyncio
async def test_mcp_wait_passes_numeric_timeout():
    client = FakeClientSession()
    session = _connected_mcp_session(client)

    await session.execute_step("wait", "#body", "2500")

    assert client.calls == [("playwright_wait", {"selector": "#body", "timeout": 2500})]


def test_validation_reply_that_is_not_json_is_used_verbatim():
    result = interpret_validation_reply("  button#submit  ", "#submit")

    assert result.success is True
    assert result.improved_selector == "button#submit"


def test_validation_reply_echoing_selector_offers_no_improvement():
    result = interpret_validation_reply(json.dumps({"improvedSelector": "#login"}), "#login")

    assert result.success is True
    assert result.improved_selector is None


def test_validation_reply_marked_invalid_is_failure():
    result = interpret_validation_reply(json.dumps({"isValid": False, "error": "not found"}), "#gone")

    assert result.success is False
    assert result.error == "not found"


def test_action_reply_respects_explicit_failure():
    result = interpret_action_reply(json.dumps({"success": False}), "#x", 500)

    assert result.success is False
    assert result.error


def test_action_reply_defaults_to_success_for_plain_text():
    result = interpret_action_reply("clicked", "#x", 500)

    assert result.success is True
    assert result.execution_time_ms == 500


def test_wait_timeout_falls_back_for_non_numeric_data():
    assert wait_timeout_ms("3000") == 3000
    assert wait_timeout_ms("a while") == 1000
    assert wait_timeout_ms(None) == 1000


def test_alternative_selectors_derive_from_identifier():
    assert alternative_selectors("#login") == [
        "text=login",
        'role=button[name="login"]',
        '[data-testid="login"]',
        '[aria-label*="login"]',
    ]
    assert alternative_selectors("#") == []


def test_validation_reply_with_fractional_time_keeps_improvement():
    reply = json.dumps({"isValid": True, "improvedSelector": "[data-testid=login]", "executionTime": 12.5})

    result = interpret_validation_reply(reply, "#login")

    assert result.success is True
    assert result.improved_selector == "[data-testid=login]"
    assert result.execution_time_ms == 12


@pytest.mark.parametrize("reported, expected", [("12ms", 12), ("soon", None), (None, None)])
def test_validation_reply_time_is_dropped_when_not_numeric(reported, expected):
    reply = json.dumps({"isValid": True, "executionTime": reported})

    assert interpret_validation_reply(reply, "#login").execution_time_ms == expected


def test_action_reply_with_unparseable_time_uses_default():
    result = interpret_action_reply(json.dumps({"success": True, "executionTime": "fast"}), "#x", 500)

    assert result.success is True
    assert result.execution_time_ms == 500
