from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


FIX_BRANCH_NAME = "resurrect-fix"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """
    Base for every payload that crosses the HTTP boundary or comes back from the model.
    Attributes are snake_case in Python and camelCase on the wire; both spellings validate.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StageId(str, Enum):
    analyze = "analyze"
    search = "search"
    generate = "generate"
    pr = "pr"


STAGE_ORDER: tuple[StageId, ...] = (StageId.analyze, StageId.search, StageId.generate, StageId.pr)

STAGE_NAMES: Dict[StageId, str] = {
    StageId.analyze: "Analyzing Error",
    StageId.search: "Searching Solutions",
    StageId.generate: "Generating Fix",
    StageId.pr: "Creating PR",
}


class StepStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    error = "error"


class ErrorKind(str, Enum):
    rate_limited = "rate_limited"
    quota_exhausted = "quota_exhausted"
    upstream_error = "upstream_error"
    parse_failure = "parse_failure"


class ClassifiedError(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    kind: ErrorKind
    http_status: Optional[int] = None
    message: str


class ErrorContext(WireModel):
    """
    Input to one pipeline run. Built once (from a webhook, a manual trigger or the
    log collaborator) and never mutated afterwards.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    deployment_id: str = "unknown"
    project_name: str
    branch: str = "main"
    commit_message: str = ""
    error_message: str = "Build failed"
    error_logs: List[str] = Field(default_factory=list)


class RepoRef(WireModel):
    owner: str
    repo: str
    branch: str = "main"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


# ---------- Stage payloads (what the model is asked to return) ----------


class AnalysisResult(WireModel):
    error_type: str
    root_cause: str
    affected_file: Optional[str] = None
    affected_line: Optional[int] = None
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    suggested_search_query: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("affected_line", mode="before")
    @classmethod
    def _blank_line_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip().lstrip("-").isdigit():
            return None
        return v


class ProposedChange(WireModel):
    file: str
    action: Literal["create", "modify", "delete"] = "modify"
    # The generate prompt historically asked for `afterContent`; accept it as well.
    content: str = Field(
        default="",
        validation_alias=AliasChoices("content", "afterContent", "newContent", "after_content"),
    )

    @field_validator("action", mode="before")
    @classmethod
    def _lower_action(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("content", mode="before")
    @classmethod
    def _none_content(cls, v: Any) -> Any:
        return "" if v is None else v


def _clamp_confidence(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip().rstrip("%")
        try:
            v = float(v)
        except ValueError:
            return v
    if isinstance(v, float):
        v = int(round(v))
    if isinstance(v, int) and not isinstance(v, bool):
        return max(0, min(100, v))
    return v


class Solution(WireModel):
    description: str
    confidence: int = Field(default=50, ge=0, le=100)
    steps: List[str] = Field(default_factory=list)
    code_changes: List[ProposedChange] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> Any:
        return _clamp_confidence(v)


class SolutionSet(WireModel):
    solutions: List[Solution]
    recommended_solution_index: int = Field(
        default=0,
        validation_alias=AliasChoices(
            "recommendedSolutionIndex", "recommendedSolution", "recommended_solution_index"
        ),
    )

    def recommended(self) -> Optional[Solution]:
        if not self.solutions:
            return None
        i = self.recommended_solution_index
        if 0 <= i < len(self.solutions):
            return self.solutions[i]
        return self.solutions[0]


class FixPlan(WireModel):
    branch_name: str = FIX_BRANCH_NAME
    commit_message: str = ""
    changes: List[ProposedChange]
    pr_title: str = ""
    pr_description: str = ""

    @field_validator("branch_name", mode="before")
    @classmethod
    def _fixed_branch(cls, v: Any) -> str:
        # Fix branches are never named by the model.
        return FIX_BRANCH_NAME


# ---------- Diff preparation / fix payload ----------


class FileChange(WireModel):
    path: str
    original_content: str = ""
    new_content: str = ""
    action: Literal["create", "modify", "delete"] = "modify"
    diff: str = ""


class FixPayload(WireModel):
    title: str
    description: str
    changes: List[FileChange] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)
    branch_name: str = FIX_BRANCH_NAME
    commit_message: str = ""


# ---------- Steps / transitions ----------


class AgentStep(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: StageId
    name: str
    status: StepStatus = StepStatus.pending
    result: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    error: Optional[ClassifiedError] = None
    warning: Optional[ClassifiedError] = None


def initial_steps() -> List[AgentStep]:
    return [AgentStep(id=s, name=STAGE_NAMES[s]) for s in STAGE_ORDER]


class TransitionKind(str, Enum):
    run_started = "run_started"
    stage_started = "stage_started"
    stage_completed = "stage_completed"
    stage_failed = "stage_failed"
    run_finished = "run_finished"


class StepTransition(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    run_id: str
    kind: TransitionKind
    stage: Optional[StageId] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[ClassifiedError] = None
    warning: Optional[ClassifiedError] = None
    timestamp: datetime = Field(default_factory=utcnow)


class PipelineRun(WireModel):
    run_id: str
    steps: List[AgentStep]
    analysis: Optional[Dict[str, Any]] = None
    fix: Optional[FixPayload] = None
    explanation: Optional[str] = None
    error: Optional[ClassifiedError] = None
    failed_stage: Optional[StageId] = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and not self.cancelled and self.fix is not None and bool(self.fix.changes)


# ---------- HTTP surface ----------


class AutoFixRequest(WireModel):
    owner: str
    repo: str
    branch: str = "main"
    deployment_id: Optional[str] = None
    vercel_project_id: Optional[str] = None


class AgentAction(str, Enum):
    analyze_error = "analyze_error"
    search_solution = "search_solution"
    generate_fix = "generate_fix"


class AgentRequest(WireModel):
    action: str
    error_info: Optional[ErrorContext] = None
    error_analysis: Optional[str] = None
    search_results: Optional[str] = None


class DeploymentMeta(WireModel):
    github_commit_ref: Optional[str] = None
    github_commit_message: Optional[str] = None
    github_commit_repo: Optional[str] = None
    github_commit_org: Optional[str] = None


class DeploymentInfo(WireModel):
    id: str
    name: Optional[str] = None
    url: Optional[str] = None
    state: Optional[str] = None
    meta: Optional[DeploymentMeta] = None


class DeploymentError(WireModel):
    message: Optional[str] = None
    logs: List[str] = Field(default_factory=list)


class DeploymentWebhook(WireModel):
    """Deployment event as delivered by the hosting provider's webhook."""

    type: str = ""
    deployment: Optional[DeploymentInfo] = None
    error: Optional[DeploymentError] = None

    def is_failure(self) -> bool:
        if self.type == "deployment.error":
            return True
        if self.deployment is not None and (self.deployment.state or "").upper() == "ERROR":
            return True
        return self.error is not None
