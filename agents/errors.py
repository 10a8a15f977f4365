"""Error taxonomy for the scenario compiler.

Only ``ScenarioGenerationError`` is meant to reach callers; the other kinds are
raised and recovered inside the pipeline and surface as ``Degraded`` reasons or
log lines.
"""


class CompilerError(Exception):
    """Base class for every error raised by the compiler pipeline."""


class ScenarioGenerationError(CompilerError):
    """The call to the text-generation service itself failed."""


class GenerationParseError(CompilerError):
    """The service replied, but not with a usable scenario list."""


class AutomationConnectionError(CompilerError):
    """The browser automation backend could not be reached."""


class StepError(CompilerError):
    def __init__(self, action: str, target: str, reason: str):
        super().__init__(f"{action} on {target} failed: {reason}")
        self.action = action
        self.target = target
        self.reason = reason


class ScenarioError(CompilerError):
    def __init__(self, scenario_id: str, reason: str):
        super().__init__(f"scenario {scenario_id} failed: {reason}")
        self.scenario_id = scenario_id
        self.reason = reason


class CodeGenError(CompilerError):
    """A scenario could not be turned into test source."""
