"""Deterministic scenario -> Playwright test source generation.

``compile_scenario`` is a pure function: it performs no I/O and returns
byte-identical text for identical input. Two targets are supported, a
TypeScript ``@playwright/test`` spec and a Python ``pytest-playwright`` module.
"""

import json
import re
from datetime import datetime, timezone
from typing import List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict

from models.scenario import Scenario, Step

SelectorStrategy = Literal["role-first", "css"]
Language = Literal["typescript", "python"]

TEXT_PREFIX = "text="
ROLE_RE = re.compile(r"""^role=([^\[\]]+?)(?:\[name=(['"])(.*?)\2\])?$""")
QUOTED_RE = re.compile(r"""'([^']+)'|"([^"]+)\"""")

FILE_EXTENSIONS = {"typescript": "ts", "python": "py"}


class CompileOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector_strategy: SelectorStrategy = "role-first"
    language: Language = "typescript"


class LocatorRef(NamedTuple):
    kind: str  # "role", "text" or "css"
    value: str
    name: Optional[str] = None


def resolve_locator(target: str, strategy: SelectorStrategy) -> LocatorRef:
    if strategy == "role-first":
        match = ROLE_RE.match(target)
        if match:
            return LocatorRef("role", match.group(1).strip(), match.group(3))
    if target.startswith(TEXT_PREFIX):
        return LocatorRef("text", target[len(TEXT_PREFIX):])
    return LocatorRef("css", target)


def quoted_text(data: str) -> Optional[str]:
    match = QUOTED_RE.search(data)
    if not match:
        return None
    return match.group(1) if match.group(1) is not None else match.group(2)


def _comment_text(text: str) -> str:
    return " ".join(text.split())


class TypeScriptEmitter:
    indent = "  "

    @staticmethod
    def literal(value: str) -> str:
        escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n").replace("\r", "\\r")
        return f"'{escaped}'"

    def header(self, scenario: Scenario) -> List[str]:
        title = re.sub(r"\s+", " ", re.sub(r"[^a-zA-Z0-9\s]", "", scenario.name)).strip() or scenario.id
        return [
            "import { test, expect } from '@playwright/test';",
            "",
            f"test({self.literal(title)}, async ({{ page }}) => {{",
        ]

    def footer(self) -> List[str]:
        return ["});"]

    def empty_body(self) -> List[str]:
        return ["// No steps"]

    def comment(self, text: str) -> str:
        return f"// {_comment_text(text)}"

    def locator(self, ref: LocatorRef) -> str:
        if ref.kind == "role":
            if ref.name:
                return f"page.getByRole({self.literal(ref.value)}, {{ name: {self.literal(ref.name)} }})"
            return f"page.getByRole({self.literal(ref.value)})"
        if ref.kind == "text":
            return f"page.getByText({self.literal(ref.value)})"
        return f"page.locator({self.literal(ref.value)})"

    def goto(self, url: str) -> str:
        return f"await page.goto({self.literal(url)});"

    def call(self, ref: LocatorRef, method: str, argument: Optional[str] = None) -> str:
        args = "" if argument is None else self.literal(argument)
        return f"await {self.locator(ref)}.{method}({args});"

    def expect_visible(self, ref: LocatorRef) -> str:
        return f"await expect({self.locator(ref)}).toBeVisible();"

    def expect_text(self, ref: LocatorRef, text: str) -> str:
        return f"await expect({self.locator(ref)}).toContainText({self.literal(text)});"

    def wait_for(self, selector: str) -> str:
        return f"await page.waitForSelector({self.literal(selector)});"

    fill_method = "fill"
    method_names = {"select": "selectOption", "hover": "hover"}


class PythonEmitter:
    indent = "    "

    @staticmethod
    def literal(value: str) -> str:
        return json.dumps(value, ensure_ascii=False)

    def header(self, scenario: Scenario) -> List[str]:
        slug = re.sub(r"[^a-zA-Z0-9]+", "_", scenario.name).strip("_").lower()
        if not slug:
            slug = re.sub(r"[^a-zA-Z0-9]+", "_", scenario.id).strip("_").lower() or "scenario"
        return [
            f"# Scenario: {_comment_text(scenario.name)}",
            "from playwright.sync_api import Page, expect",
            "",
            "",
            f"def test_{slug}(page: Page):",
        ]

    def footer(self) -> List[str]:
        return []

    def empty_body(self) -> List[str]:
        return ["pass"]

    def comment(self, text: str) -> str:
        return f"# {_comment_text(text)}"

    def locator(self, ref: LocatorRef) -> str:
        if ref.kind == "role":
            if ref.name:
                return f"page.get_by_role({self.literal(ref.value)}, name={self.literal(ref.name)})"
            return f"page.get_by_role({self.literal(ref.value)})"
        if ref.kind == "text":
            return f"page.get_by_text({self.literal(ref.value)})"
        return f"page.locator({self.literal(ref.value)})"

    def goto(self, url: str) -> str:
        return f"page.goto({self.literal(url)})"

    def call(self, ref: LocatorRef, method: str, argument: Optional[str] = None) -> str:
        args = "" if argument is None else self.literal(argument)
        return f"{self.locator(ref)}.{method}({args})"

    def expect_visible(self, ref: LocatorRef) -> str:
        return f"expect({self.locator(ref)}).to_be_visible()"

    def expect_text(self, ref: LocatorRef, text: str) -> str:
        return f"expect({self.locator(ref)}).to_contain_text({self.literal(text)})"

    def wait_for(self, selector: str) -> str:
        return f"page.wait_for_selector({self.literal(selector)})"

    fill_method = "fill"
    method_names = {"select": "select_option", "hover": "hover"}


EMITTERS = {"typescript": TypeScriptEmitter, "python": PythonEmitter}


def _emit_step(emitter, step: Step, strategy: SelectorStrategy) -> List[str]:
    action = str(step.action)
    target = str(step.target)
    description = str(step.description or "")
    lines = [emitter.comment(description)] if description else []

    if action == "goto":
        lines.append(emitter.goto(target))
    elif action == "click":
        lines.append(emitter.call(resolve_locator(target, strategy), "click"))
    elif action in ("fill", "type"):
        lines.append(emitter.call(resolve_locator(target, strategy), emitter.fill_method, step.data or ""))
    elif action == "expect":
        ref = resolve_locator(target, strategy)
        data = (step.data or "").lower()
        text = quoted_text(step.data) if step.data and "text" in data and "visible" not in data else None
        lines.append(emitter.expect_text(ref, text) if text else emitter.expect_visible(ref))
    elif action == "wait":
        lines.append(emitter.wait_for(target))
    else:
        method = emitter.method_names.get(action) or re.sub(r"\W+", "_", action).strip("_") or "action"
        lines = [emitter.comment(f"Unsupported action: {action}"), emitter.comment(description or action)]
        argument = None if step.data is None else str(step.data)
        lines.append(emitter.call(LocatorRef("css", target), method, argument))
    return lines


def compile_scenario(scenario: Scenario, options: Optional[CompileOptions] = None) -> str:
    """Render one scenario as a complete test file.

    One statement is emitted per step, in step order. Steps whose action has
    no dedicated mapping become a generic locator call preceded by a comment
    that keeps their description.
    """
    options = options or CompileOptions()
    emitter = EMITTERS[options.language]()

    body: List[str] = []
    for index, step in enumerate(scenario.steps):
        if index:
            body.append("")
        body.extend(_emit_step(emitter, step, options.selector_strategy))
    if not body:
        body = emitter.empty_body()

    lines = emitter.header(scenario)
    lines.extend(f"{emitter.indent}{line}" if line else "" for line in body)
    lines.extend(emitter.footer())
    return "\n".join(lines) + "\n"


def iso_timestamp(moment: datetime) -> str:
    """``2025-08-26T07:12:47.789Z`` with ':' and '.' replaced by '-'."""
    moment = moment.astimezone(timezone.utc)
    stamp = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return stamp.replace(":", "-").replace(".", "-")


def suggested_file_name(scenario: Scenario, moment: datetime, language: Language = "typescript") -> str:
    base = re.sub(r"\s+", "_", re.sub(r"[^a-zA-Z0-9\s]", "_", scenario.name))
    return f"{base}_{iso_timestamp(moment)}.spec.{FILE_EXTENSIONS[language]}"
