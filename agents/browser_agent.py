import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Locator, Page
from playwright_stealth import Stealth

from agents.automation_session import AutomationSession, wait_timeout_ms
from models.scenario import ROOT_SELECTOR, ExecutionResult

logger = logging.getLogger(__name__)

ACTION_TIMEOUT_MS = 10000
MAX_TEXT_SELECTOR_LENGTH = 50

ELEMENT_INFO_JS = """el => ({
    tagName: el.tagName.toLowerCase(),
    textContent: el.textContent,
    attributes: Object.fromEntries(Array.from(el.attributes).map(a => [a.name, a.value]))
})"""


def alternative_selectors(selector: str) -> List[str]:
    """Candidate selectors to try when ``selector`` resolves to nothing."""
    name = re.sub(r"[#.]", "", selector).strip()
    if not name:
        return []
    return [
        f"text={name}",
        f'role=button[name="{name}"]',
        f'[data-testid="{name}"]',
        f'[aria-label*="{name}"]',
    ]


class BrowserAgent(AutomationSession):
    """Session that drives a local Chromium through Playwright directly."""

    backend_name = "Playwright"

    def __init__(self, headless: bool = True, screenshot_dir: Optional[str] = None):
        super().__init__()
        self.headless = headless
        self.screenshot_dir = screenshot_dir
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self.page: Page | None = None
        self.playwright = None

    async def _open(self) -> None:
        """Start the browser and open a stealth page."""
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(headless=self.headless)
        self.context = await self.browser.new_context(
            viewport={"width": 1280, "height": 720},
            user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
        )
        self.page = await self.context.new_page()
        await Stealth().apply_stealth_async(self.page)

    async def _close(self) -> None:
        """Stop the browser and close context."""
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        self.page = self.context = self.browser = self.playwright = None

    async def _error_screenshot(self, label: str) -> None:
        if not self.screenshot_dir or not self.page:
            return
        os.makedirs(self.screenshot_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        try:
            await self.page.screenshot(path=os.path.join(self.screenshot_dir, f"{timestamp}_{label}_error.png"))
        except Exception as e:
            logger.debug(f"Could not capture error screenshot: {e}")

    async def _run(self, label: str, operation) -> ExecutionResult:
        try:
            await operation
        except Exception as e:
            await self._error_screenshot(label)
            return ExecutionResult(success=False, error=str(e))
        return ExecutionResult(success=True)

    async def navigate(self, url: str, data: Optional[str] = None) -> ExecutionResult:
        return await self._run("goto", self.page.goto(url))

    async def click(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        return await self._run("click", self.page.click(selector, timeout=ACTION_TIMEOUT_MS))

    async def fill(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        return await self._run("fill", self.page.fill(selector, data or "", timeout=ACTION_TIMEOUT_MS))

    async def assert_visible(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        locator = self.page.locator(selector).first
        return await self._run("expect", locator.wait_for(state="visible", timeout=ACTION_TIMEOUT_MS))

    async def wait_for(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        timeout = wait_timeout_ms(data)
        if selector == ROOT_SELECTOR:
            return await self._run("wait", self.page.wait_for_timeout(timeout))
        return await self._run("wait", self.page.wait_for_selector(selector, timeout=max(timeout, ACTION_TIMEOUT_MS)))

    async def type_text(self, selector: str, data: Optional[str] = None) -> ExecutionResult:
        locator = self.page.locator(selector).first
        return await self._run("type", locator.press_sequentially(data or "", timeout=ACTION_TIMEOUT_MS))

    async def _element_info(self, locator: Locator) -> Dict[str, Any]:
        try:
            return await locator.evaluate(ELEMENT_INFO_JS)
        except Exception:
            return {"tagName": "unknown", "attributes": {}}

    async def _suggest_better(self, locator: Locator) -> Optional[str]:
        info = await self._element_info(locator)
        attributes = info.get("attributes") or {}

        if attributes.get("data-testid"):
            return f'[data-testid="{attributes["data-testid"]}"]'
        if attributes.get("aria-label"):
            return f'[aria-label="{attributes["aria-label"]}"]'

        text = (info.get("textContent") or "").strip()
        if text and len(text) < MAX_TEXT_SELECTOR_LENGTH:
            return f"text={text}"

        for cls in (attributes.get("class") or "").split():
            # Generated class names change between builds.
            if "css-" in cls or "Mui" in cls:
                continue
            try:
                if await self.page.locator(f".{cls}").count() == 1:
                    return f".{cls}"
            except Exception:
                continue
        return None

    async def _validate(self, selector: str) -> ExecutionResult:
        locator = self.page.locator(selector).first
        if await locator.count() > 0:
            improved = await self._suggest_better(locator)
            if improved == selector:
                improved = None
            return ExecutionResult(success=True, improved_selector=improved)

        for candidate in alternative_selectors(selector):
            try:
                if await self.page.locator(candidate).first.count() > 0:
                    logger.info(f"Selector {selector} not found, using alternative {candidate}")
                    return ExecutionResult(success=True, improved_selector=candidate)
            except Exception:
                continue

        return ExecutionResult(
            success=False,
            error=f"Element not found with selector: {selector}. No suitable alternatives found."
        )
