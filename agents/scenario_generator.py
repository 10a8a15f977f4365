import json
import logging
import re
from typing import Any, Dict, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import ValidationError

from agents.errors import GenerationParseError, ScenarioGenerationError
from models.scenario import ROOT_SELECTOR, Credentials, Scenario, Step

logger = logging.getLogger(__name__)

MIN_RECOMMENDED_SCENARIOS = 5

# Verbs the model tends to use instead of the recognized action names.
ACTION_ALIASES = {
    "navigate": "goto",
    "open": "goto",
    "visit": "goto",
    "assert": "expect",
    "verify": "expect",
    "check": "expect",
    "input": "fill",
    "enter": "fill",
    "press": "click",
    "tap": "click",
}

PROMPT_TEMPLATE = """You are a test automation expert. Generate comprehensive test scenarios based on the following requirements:

OBJECTIVE: {objective}
TARGET URL: {url}
{credentials}

Please generate AT LEAST {min_scenarios} test scenarios in the following JSON format:

{{
  "scenarios": [
    {{
      "id": "scn_1",
      "name": "Scenario Name",
      "steps": [
        {{
          "action": "goto|fill|click|expect|wait|type|select|hover",
          "target": "ID selector only (e.g., #username, #login-button, #search-input)",
          "data": "input data (for fill/type actions)",
          "description": "Human readable step description"
        }}
      ],
      "tags": ["tag1", "tag2"]
    }}
  ]
}}

CRITICAL REQUIREMENTS:
1. Generate AT LEAST {min_scenarios} different test scenarios
2. Use ONLY ID selectors (#element-id) for the target field
3. DO NOT use CSS classes, data attributes, or other selectors
4. Include both positive and negative test cases
5. Cover different user flows and edge cases
6. Use realistic test data
7. Add appropriate wait times for dynamic content
8. Use descriptive step descriptions
9. Tag scenarios appropriately (smoke, regression, auth, etc.)

Example target values:
- "#username" (not ".username" or "[data-testid='username']")
- "#login-button" (not "button[type='submit']" or ".btn-primary")

Return only the JSON object."""

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")


def _first_balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(reply: str) -> str:
    """Pull the JSON object out of a free-form model reply.

    The first fenced code block wins; otherwise the first balanced ``{...}``
    span anywhere in the reply is used.
    """
    fenced = _FENCE_RE.search(reply)
    if fenced:
        candidate = _first_balanced_object(fenced.group(1))
        if candidate is not None:
            return candidate
    candidate = _first_balanced_object(reply)
    if candidate is None:
        raise GenerationParseError("no JSON object found in reply")
    return candidate


def _normalize_action(raw: Any) -> str:
    if not raw:
        return "click"
    action = str(raw).strip().lower()
    return ACTION_ALIASES.get(action, action)


def _build_step(raw: Dict[str, Any], index: int) -> Step:
    if not isinstance(raw, dict):
        raise GenerationParseError(f"step {index} is not an object")
    data = raw.get("data")
    return Step(
        action=_normalize_action(raw.get("action")),
        target=str(raw.get("target") or ROOT_SELECTOR),
        data=None if data is None else str(data),
        description=str(raw.get("description") or f"Step {index}"),
    )


def _build_scenario(raw: Dict[str, Any], index: int) -> Scenario:
    if not isinstance(raw, dict):
        raise GenerationParseError(f"scenario {index} is not an object")
    steps = raw.get("steps") or []
    if not isinstance(steps, list):
        raise GenerationParseError(f"scenario {index} steps is not a list")
    tags = raw.get("tags") or ["generated"]
    if not isinstance(tags, list):
        raise GenerationParseError(f"scenario {index} tags is not a list")
    return Scenario(
        id=str(raw.get("id") or f"scn_{index}"),
        name=str(raw.get("name") or f"Generated Scenario {index}"),
        steps=tuple(_build_step(step, step_index) for step_index, step in enumerate(steps, 1)),
        tags=tuple(str(tag) for tag in tags),
    )


def parse_scenarios(reply: str) -> List[Scenario]:
    """Turn a model reply into scenarios, or an empty list if it is unusable."""
    try:
        payload = json.loads(extract_json_object(reply))
        raw_scenarios = payload.get("scenarios") if isinstance(payload, dict) else None
        if not isinstance(raw_scenarios, list):
            raise GenerationParseError("reply has no 'scenarios' array")
        scenarios = [_build_scenario(raw, index) for index, raw in enumerate(raw_scenarios, 1)]
    except (GenerationParseError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Could not parse scenarios from model reply: {e}")
        logger.debug(f"Unparseable reply: {reply!r}")
        return []

    seen = set()
    unique = []
    for index, scenario in enumerate(scenarios, 1):
        if scenario.id in seen:
            scenario = scenario.model_copy(update={"id": f"{scenario.id}_{index}"})
        seen.add(scenario.id)
        unique.append(scenario)
    return unique


class ScenarioGenerator:
    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        model: str = "gemini-2.0-flash",
        api_key: Optional[str] = None,
        temperature: float = 0.3,
    ):
        self.model = model
        if llm is None:
            kwargs = {"google_api_key": api_key} if api_key else {}
            llm = ChatGoogleGenerativeAI(model=model, temperature=temperature, **kwargs)
        self.llm = llm
        self.prompt = ChatPromptTemplate.from_template(PROMPT_TEMPLATE)
        self.chain = self.prompt | self.llm | StrOutputParser()

    @staticmethod
    def _credentials_line(credentials: Optional[Credentials]) -> str:
        if credentials is None:
            return ""
        line = f"CREDENTIALS: Username: {credentials.username}"
        if credentials.password:
            line += f", Password: {credentials.password}"
        return line

    async def request_reply(self, objective: str, target_url: str, credentials: Optional[Credentials] = None) -> str:
        """Send the prompt and return the raw reply text."""
        try:
            return await self.chain.ainvoke({
                "objective": objective,
                "url": target_url,
                "credentials": self._credentials_line(credentials),
                "min_scenarios": MIN_RECOMMENDED_SCENARIOS,
            })
        except Exception as e:
            raise ScenarioGenerationError(f"Gemini request failed: {e}") from e

    async def generate(self, objective: str, target_url: str, credentials: Optional[Credentials] = None) -> List[Scenario]:
        logger.info(f"Generating scenarios with {self.model} for objective: {objective}")
        reply = await self.request_reply(objective, target_url, credentials)
        scenarios = parse_scenarios(reply)
        if 0 < len(scenarios) < MIN_RECOMMENDED_SCENARIOS:
            logger.warning(f"Model returned {len(scenarios)} scenarios, fewer than the {MIN_RECOMMENDED_SCENARIOS} requested")
        logger.info(f"Generated {len(scenarios)} scenarios")
        return scenarios
