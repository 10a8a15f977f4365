"""Tests for the in-process Playwright backend's selector validation."""

import pytest

from agents.automation_session import SessionState
from agents.browser_agent import BrowserAgent


class FakeLocator:
    def __init__(self, count=1, info=None, broken=False):
        self._count = count
        self.info = info or {}
        self.broken = broken

    @property
    def first(self):
        return self

    async def count(self):
        return self._count

    async def evaluate(self, script):
        if self.broken:
            raise RuntimeError("element detached")
        return self.info


class FakePage:
    """Page whose locators are looked up from a selector -> FakeLocator map."""

    def __init__(self, locators):
        self.locators = locators
        self.queried = []

    def locator(self, selector):
        self.queried.append(selector)
        return self.locators.get(selector, FakeLocator(count=0))


def _agent(locators):
    agent = BrowserAgent()
    agent.page = FakePage(locators)
    agent.state = SessionState.CONNECTED
    return agent


def _element(text="", **attributes):
    return FakeLocator(info={"tagName": "button", "textContent": text, "attributes": attributes})


@pytest.mark.asyncio
async def test_data_testid_is_preferred():
    agent = _agent({"#login": _element("Log in", **{"data-testid": "login", "aria-label": "Log in", "class": "btn"})})

    result = await agent.validate_selector("#login")

    assert result.success is True
    assert result.improved_selector == '[data-testid="login"]'


@pytest.mark.asyncio
async def test_aria_label_comes_before_text():
    agent = _agent({"#login": _element("Log in", **{"aria-label": "Sign in"})})

    result = await agent.validate_selector("#login")

    assert result.improved_selector == '[aria-label="Sign in"]'


@pytest.mark.asyncio
async def test_short_text_is_used_without_attributes():
    agent = _agent({"button.primary": _element("  Submit  ")})

    result = await agent.validate_selector("button.primary")

    assert result.improved_selector == "text=Submit"


@pytest.mark.asyncio
async def test_generated_classes_are_skipped_for_unique_class():
    long_text = "Continue to the payment page once the basket has been reviewed"
    agent = _agent({
        "div > button": _element(long_text, **{"class": "css-1x2y3z MuiButton-root checkout"}),
        ".checkout": FakeLocator(count=1),
    })

    result = await agent.validate_selector("div > button")

    assert result.improved_selector == ".checkout"
    assert ".css-1x2y3z" not in agent.page.queried
    assert ".MuiButton-root" not in agent.page.queried


@pytest.mark.asyncio
async def test_shared_class_gives_no_improvement():
    long_text = "Continue to the payment page once the basket has been reviewed"
    agent = _agent({
        "div > button": _element(long_text, **{"class": "btn"}),
        ".btn": FakeLocator(count=3),
    })

    result = await agent.validate_selector("div > button")

    assert result.success is True
    assert result.improved_selector is None


@pytest.mark.asyncio
async def test_suggestion_equal_to_selector_is_not_an_improvement():
    agent = _agent({'[data-testid="login"]': _element(**{"data-testid": "login"})})

    result = await agent.validate_selector('[data-testid="login"]')

    assert result.success is True
    assert result.improved_selector is None


@pytest.mark.asyncio
async def test_unreadable_element_still_validates():
    agent = _agent({"#login": FakeLocator(broken=True)})

    result = await agent.validate_selector("#login")

    assert result.success is True
    assert result.improved_selector is None


@pytest.mark.asyncio
async def test_missing_element_falls_back_to_alternative():
    agent = _agent({'[data-testid="login"]': FakeLocator(count=1)})

    result = await agent.validate_selector("#login")

    assert result.success is True
    assert result.improved_selector == '[data-testid="login"]'
    assert agent.page.queried[:3] == ["#login", "text=login", 'role=button[name="login"]']


@pytest.mark.asyncio
async def test_missing_element_without_alternative_fails():
    agent = _agent({})

    result = await agent.validate_selector("#login")

    assert result.success is False
    assert "No suitable alternatives found" in result.error
