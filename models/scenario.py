from typing import Generic, List, Literal, Optional, Tuple, TypeVar, Union
from pydantic import BaseModel, ConfigDict, Field

ActionType = Literal["goto", "fill", "click", "expect", "wait", "type", "select", "hover"]
ACTION_TYPES: Tuple[str, ...] = ("goto", "fill", "click", "expect", "wait", "type", "select", "hover")

# Target used when the model leaves a step without one.
ROOT_SELECTOR = "#body"

T = TypeVar("T")


class IRModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Step(IRModel):
    action: ActionType = Field(..., description="操作タイプ (goto, fill, click, expect, wait, type, select, hover)")
    target: str = Field(..., description="セレクタまたはURL")
    data: Optional[str] = Field(None, description="入力値など")
    description: str = Field(..., description="このステップの説明")


class Scenario(IRModel):
    id: str
    name: str
    steps: Tuple[Step, ...] = ()
    tags: Tuple[str, ...] = ("generated",)
    time_taken_to_compile: Optional[str] = Field(None, alias="timeTakenToCompile")


class Credentials(IRModel):
    username: str
    password: Optional[str] = None


class GenerationRequest(IRModel):
    objective: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    credentials: Optional[Credentials] = None
    run_id: Optional[str] = Field(None, alias="runId")


class RunMetadata(IRModel):
    generated_at: str = Field(..., alias="generatedAt")
    model: str
    total_time: Optional[str] = Field(None, alias="totalTime")
    source: Literal["gemini_only", "gemini_plus_mcp"]
    mcp_validation_successful: Optional[bool] = Field(None, alias="mcpValidationSuccessful")
    stage: str


class GenerationRun(IRModel):
    run_id: str = Field(..., alias="runId")
    scenarios: Tuple[Scenario, ...] = ()
    metadata: RunMetadata


class ExecutionResult(IRModel):
    success: bool
    improved_selector: Optional[str] = None
    execution_time_ms: Optional[int] = None
    error: Optional[str] = None


class Ok(IRModel, Generic[T]):
    value: T
    tag: Literal["ok"] = "ok"


class Degraded(IRModel, Generic[T]):
    original: T
    reason: str
    tag: Literal["degraded"] = "degraded"

    @property
    def value(self) -> T:
        return self.original


StepOutcome = Union[Ok[Step], Degraded[Step]]
ScenarioOutcome = Union[Ok[Scenario], Degraded[Scenario]]


class CompiledArtifact(IRModel):
    scenario_id: str
    scenario_name: str
    file_name: str
    source: str


class CompilationFailure(IRModel):
    scenario_name: str
    error: str


class CompilationSummary(IRModel):
    successful: List[CompiledArtifact] = []
    failed: List[CompilationFailure] = []

    @property
    def total_scenarios(self) -> int:
        return len(self.successful) + len(self.failed)


class GenerationResult(IRModel):
    gemini_output: GenerationRun
    mcp_output: GenerationRun
    compilation: CompilationSummary
    mcp_validation_successful: bool

    @property
    def artifacts(self) -> List[CompiledArtifact]:
        return list(self.compilation.successful)
