"""Best-effort selector repair against a live automation session.

Repair never raises and never changes the number or order of scenarios. It
falls back at three levels: the whole session (connect failed), a single
scenario (unexpected exception) and a single step (validation or execution
failed). Every fallback substitutes the untouched original value.
"""

import asyncio
import logging
import re
import time
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict

from agents.automation_session import AutomationSession
from agents.errors import AutomationConnectionError, ScenarioError, StepError
from models.scenario import (
    ROOT_SELECTOR,
    Degraded,
    Ok,
    Scenario,
    ScenarioOutcome,
    Step,
    StepOutcome,
)

logger = logging.getLogger(__name__)

SELECTOR_ACTIONS = ("click", "fill", "expect", "type")

SessionFactory = Callable[[], AutomationSession]


class RepairReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    scenarios: List[Scenario]
    validation_succeeded: bool
    outcomes: List[ScenarioOutcome] = []
    step_outcomes: List[List[StepOutcome]] = []
    reason: Optional[str] = None


def _strip_prefix(description: str, *prefixes: str) -> str:
    for prefix in prefixes:
        description = re.sub(rf"^{prefix}\s+", "", description, flags=re.IGNORECASE)
    return description


def describe_success(step: Step, selector: str) -> str:
    if step.action == "click":
        label = _strip_prefix(step.description, "click on", "click")
        return f'Successfully clicked on "{label}" (validated selector: {selector})'
    if step.action == "fill":
        label = _strip_prefix(step.description, "enter", "fill")
        return f'Successfully filled "{label}" field (validated selector: {selector})'
    if step.action == "expect":
        return f"Successfully verified element exists (validated selector: {selector})"
    if step.action == "type":
        return f"Successfully typed text (validated selector: {selector})"
    return f"Successfully waited for element (validated selector: {selector})"


class SelectorRepairOrchestrator:
    def __init__(self, session_factory: SessionFactory, settle_delay: float = 1.0, concurrent: bool = False):
        self.session_factory = session_factory
        self.settle_delay = settle_delay
        self.concurrent = concurrent

    async def repair(self, url: str, scenarios: List[Scenario]) -> List[Scenario]:
        report = await self.repair_with_report(url, scenarios)
        return report.scenarios

    async def repair_with_report(self, url: str, scenarios: List[Scenario]) -> RepairReport:
        scenarios = list(scenarios)
        session = None
        try:
            session = self.session_factory()
            connected = await session.connect()
            if not connected:
                raise AutomationConnectionError("automation backend unavailable")

            logger.info(f"Repairing selectors for {len(scenarios)} scenarios against {url}")
            if self.concurrent:
                outcomes = list(await asyncio.gather(
                    *(self._repair_scenario(session, url, scenario) for scenario in scenarios)
                ))
            else:
                outcomes = [await self._repair_scenario(session, url, scenario) for scenario in scenarios]
        except Exception as e:
            logger.warning(f"Selector repair unavailable, keeping generated scenarios: {e}")
            return RepairReport(scenarios=scenarios, validation_succeeded=False, reason=str(e))
        finally:
            if session is not None:
                await session.disconnect()

        return RepairReport(
            scenarios=[outcome.value for outcome, _ in outcomes],
            validation_succeeded=True,
            outcomes=[outcome for outcome, _ in outcomes],
            step_outcomes=[steps for _, steps in outcomes],
        )

    async def _repair_scenario(self, session: AutomationSession, url: str, scenario: Scenario):
        logger.info(f"Executing scenario: {scenario.name} (ID: {scenario.id})")
        started = time.monotonic()
        try:
            step_outcomes = await self._repair_steps(session, url, scenario.steps)
        except Exception as e:
            error = ScenarioError(scenario.id, str(e))
            logger.warning(f"{error}; using original steps")
            return Degraded[Scenario](original=scenario, reason=str(error)), []

        elapsed = int((time.monotonic() - started) * 1000)
        repaired = scenario.model_copy(update={
            "steps": tuple(outcome.value for outcome in step_outcomes),
            "time_taken_to_compile": f"{elapsed}ms",
        })
        return Ok[Scenario](value=repaired), step_outcomes

    async def _repair_steps(self, session: AutomationSession, url: str, steps) -> List[StepOutcome]:
        """Fold over the steps in order; each step sees the page its predecessors left."""
        outcomes: List[StepOutcome] = []
        for index, step in enumerate(steps):
            logger.info(f"Executing step {index + 1}: {step.action} on {step.target}")
            try:
                outcome = await self._repair_step(session, url, step, index == 0)
            except Exception as e:
                logger.warning(f"Step {index + 1} failed, using original: {e}")
                outcome = Degraded[Step](original=step, reason=str(e))
            outcomes.append(outcome)
            if self.settle_delay and index < len(steps) - 1:
                await asyncio.sleep(self.settle_delay)
        return outcomes

    async def _repair_step(self, session: AutomationSession, url: str, step: Step, is_first: bool) -> StepOutcome:
        if step.action == "goto":
            destination = url if is_first else step.target
            result = await session.execute_step("goto", destination)
            if not result.success:
                return self._degrade(step, result.error)
            return Ok[Step](value=step.model_copy(update={"description": f"Successfully navigated to {destination}"}))

        if step.action in SELECTOR_ACTIONS or step.action == "wait":
            target = step.target
            if not (step.action == "wait" and step.target == ROOT_SELECTOR):
                validation = await session.validate_selector(step.target)
                if not validation.success:
                    # Still run the original so later steps see the expected page.
                    await session.execute_step(step.action, step.target, step.data)
                    return self._degrade(step, validation.error)
                if validation.improved_selector:
                    target = validation.improved_selector
                    logger.info(f'Selector improved from "{step.target}" to "{target}"')

            result = await session.execute_step(step.action, target, step.data)
            if not result.success:
                return self._degrade(step, result.error)
            logger.info(f"Successfully executed {step.action} on {target}")
            return Ok[Step](value=step.model_copy(update={
                "target": target,
                "description": describe_success(step, target),
            }))

        return Degraded[Step](original=step, reason=f"no live validation for action {step.action}")

    @staticmethod
    def _degrade(step: Step, reason: Optional[str]) -> Degraded[Step]:
        error = StepError(step.action, step.target, reason or "unknown error")
        logger.warning(str(error))
        return Degraded[Step](original=step, reason=str(error))
