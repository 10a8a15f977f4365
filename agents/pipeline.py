import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from agents.automation_session import MCPAutomationSession
from agents.browser_agent import BrowserAgent
from agents.errors import CodeGenError
from agents.scenario_generator import ScenarioGenerator
from agents.selector_repair import SelectorRepairOrchestrator, SessionFactory
from compiler.code_generator import CompileOptions, compile_scenario, suggested_file_name
from config import AppConfig, AutomationSettings
from models.scenario import (
    CompilationFailure,
    CompilationSummary,
    CompiledArtifact,
    GenerationRequest,
    GenerationResult,
    GenerationRun,
    RunMetadata,
    Scenario,
)

logger = logging.getLogger(__name__)


def build_session_factory(settings: AutomationSettings) -> SessionFactory:
    if settings.backend == "playwright":
        return lambda: BrowserAgent(headless=settings.headless)
    return lambda: MCPAutomationSession(command=settings.server_command, args=settings.server_args)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _unique_file_name(file_name: str, used: set) -> str:
    """Suffix repeated names with _2, _3, ... ahead of the .spec extension."""
    stem, sep, ext = file_name.partition(".spec.")
    candidate, n = file_name, 1
    while candidate in used:
        n += 1
        candidate = f"{stem}_{n}{sep}{ext}"
    used.add(candidate)
    return candidate


class ScenarioPipeline:
    """objective -> generated scenarios -> repaired scenarios -> test sources."""

    def __init__(
        self,
        generator: ScenarioGenerator,
        orchestrator: Optional[SelectorRepairOrchestrator] = None,
        compile_options: Optional[CompileOptions] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.generator = generator
        self.orchestrator = orchestrator
        self.compile_options = compile_options or CompileOptions()
        self.clock = clock

    @classmethod
    def from_config(cls, config: AppConfig) -> "ScenarioPipeline":
        generator = ScenarioGenerator(
            model=config.gemini.model,
            api_key=config.gemini.api_key or None,
            temperature=config.gemini.temperature,
        )
        orchestrator = None
        if config.automation.enabled:
            orchestrator = SelectorRepairOrchestrator(
                build_session_factory(config.automation),
                settle_delay=config.automation.step_settle_delay,
            )
        options = CompileOptions(
            selector_strategy=config.output.selector_strategy,
            language=config.output.language,
        )
        return cls(generator, orchestrator, options)

    def compile_all(self, scenarios: List[Scenario], moment: datetime) -> CompilationSummary:
        successful = []
        failed = []
        used_names = set()
        for index, scenario in enumerate(scenarios, 1):
            logger.info(f"Compiling scenario {index}: {scenario.name}")
            try:
                source = compile_scenario(scenario, self.compile_options)
                file_name = suggested_file_name(scenario, moment, self.compile_options.language)
                file_name = _unique_file_name(file_name, used_names)
            except Exception as e:
                error = CodeGenError(f"Failed to compile scenario {scenario.name}: {e}")
                logger.error(str(error))
                failed.append(CompilationFailure(scenario_name=scenario.name, error=str(error)))
                continue
            successful.append(CompiledArtifact(
                scenario_id=scenario.id,
                scenario_name=scenario.name,
                file_name=file_name,
                source=source,
            ))
        return CompilationSummary(successful=successful, failed=failed)

    async def run(self, request: GenerationRequest) -> GenerationResult:
        started = time.monotonic()
        run_id = request.run_id or f"run_{int(time.time() * 1000)}"

        scenarios = await self.generator.generate(request.objective, request.url, request.credentials)
        gemini_output = GenerationRun(
            run_id=f"{run_id}_gemini",
            scenarios=tuple(scenarios),
            metadata=RunMetadata(
                generated_at=_iso(self.clock()),
                model=self.generator.model,
                source="gemini_only",
                stage="before_mcp_processing",
            ),
        )

        validated = False
        repaired = list(scenarios)
        if self.orchestrator is None:
            logger.info("Selector validation disabled, using generated scenarios")
        elif scenarios:
            report = await self.orchestrator.repair_with_report(request.url, scenarios)
            repaired = report.scenarios
            validated = report.validation_succeeded

        total_ms = int((time.monotonic() - started) * 1000)
        finished = self.clock()
        mcp_output = GenerationRun(
            run_id=f"{run_id}_mcp",
            scenarios=tuple(repaired),
            metadata=RunMetadata(
                generated_at=_iso(finished),
                model=self.generator.model,
                total_time=f"{total_ms}ms",
                source="gemini_only" if self.orchestrator is None else "gemini_plus_mcp",
                mcp_validation_successful=validated,
                stage="after_mcp_processing",
            ),
        )

        compilation = self.compile_all(repaired, finished)
        logger.info(
            f"Run {run_id}: {len(compilation.successful)} compiled, "
            f"{len(compilation.failed)} failed, validation={'ok' if validated else 'skipped'}"
        )
        return GenerationResult(
            gemini_output=gemini_output,
            mcp_output=mcp_output,
            compilation=compilation,
            mcp_validation_successful=validated,
        )
