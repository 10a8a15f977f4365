"""Shared fixtures: an in-memory automation backend and scenario builders."""

import pytest

from agents.automation_session import AutomationSession
from models.scenario import ExecutionResult, Scenario, Step


class ScriptedSession(AutomationSession):
    """Automation backend whose replies are fixed up front."""

    backend_name = "scripted"

    def __init__(self, connect_ok=True, validations=None, failing=(), raising=()):
        super().__init__()
        self.connect_ok = connect_ok
        self.validations = validations or {}
        self.failing = set(failing)
        self.raising = set(raising)
        self.calls = []
        self.disconnect_calls = 0

    async def _open(self):
        if not self.connect_ok:
            raise ConnectionError("connection refused")

    async def _close(self):
        pass

    async def disconnect(self):
        self.disconnect_calls += 1
        await super().disconnect()

    async def _validate(self, selector):
        self.calls.append(("validate", selector))
        if selector in self.raising:
            raise RuntimeError(f"validation crashed for {selector}")
        return self.validations.get(selector, ExecutionResult(success=True))

    async def _act(self, action, target, data):
        self.calls.append((action, target, data))
        if (action, target) in self.failing:
            return ExecutionResult(success=False, error=f"{action} failed")
        return ExecutionResult(success=True, execution_time_ms=1)

    async def navigate(self, url, data=None):
        return await self._act("goto", url, data)

    async def click(self, selector, data=None):
        return await self._act("click", selector, data)

    async def fill(self, selector, data=None):
        return await self._act("fill", selector, data)

    async def assert_visible(self, selector, data=None):
        return await self._act("expect", selector, data)

    async def wait_for(self, selector, data=None):
        return await self._act("wait", selector, data)

    async def type_text(self, selector, data=None):
        return await self._act("type", selector, data)


@pytest.fixture
def scripted_session():
    return ScriptedSession


@pytest.fixture
def login_scenario():
    return Scenario(
        id="scn_1",
        name="Successful Login",
        steps=(
            Step(action="goto", target="https://x.test", description="Open the site"),
            Step(action="click", target="#login", description="Click on login button"),
            Step(action="fill", target="#user", data="bob", description="Enter username"),
            Step(action="expect", target="#welcome", data="visible", description="Welcome is shown"),
        ),
        tags=("smoke", "auth"),
    )
