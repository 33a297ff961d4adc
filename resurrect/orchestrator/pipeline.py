from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from resurrect.classifier.errors import StageFailure, classify_transport_error
from resurrect.gitops.diff_preparer import prepare_file_changes
from resurrect.gitops.github_rest import FileFetcher
from resurrect.llm.gateway_client import ModelGateway
from resurrect.models import (
    AnalysisResult,
    AutoFixRequest,
    ClassifiedError,
    ErrorContext,
    ErrorKind,
    FixPayload,
    FixPlan,
    PipelineRun,
    RepoRef,
    SolutionSet,
    StageId,
    StepTransition,
    TransitionKind,
    STAGE_ORDER,
)
from resurrect.orchestrator.tracker import TrackerState, reduce_tracker
from resurrect.parsers.build_logs import DEFAULT_ERROR_MESSAGE, headline_error
from resurrect.prompting.templates import MAX_LOG_LINES
from resurrect.sources.vercel_rest import BuildLogSource
from resurrect.stages import functions as stages
from resurrect.stages.outcome import (
    Fallback,
    StageOutcome,
    outcome_payload,
    outcome_warning,
    typed_value,
)
from resurrect.telemetry.audit import AuditLogger, redact


TransitionListener = Callable[[StepTransition], None]

DEFAULT_PR_TITLE = "[ResurrectCI] Auto-fix build error"
DEFAULT_CONFIDENCE = 75
# Any stage that fell back to raw model text caps the fix's confidence.
FALLBACK_CONFIDENCE_CAP = 40


@dataclass
class _RunScratch:
    """Per-run intermediate results. Lives on the stack of `run()`, never on the orchestrator."""

    analysis: Optional[StageOutcome[AnalysisResult]] = None
    solutions: Optional[StageOutcome[SolutionSet]] = None
    plan: Optional[StageOutcome[FixPlan]] = None
    fix: Optional[FixPayload] = None


@dataclass(frozen=True)
class PipelineOrchestrator:
    """
    Sequences analyze -> search -> generate -> pr for one ErrorContext.

    Collaborators are injected; the instance carries no mutable state, so concurrent
    runs on the same orchestrator are independent.
    """

    gateway: ModelGateway
    file_fetcher: FileFetcher
    log_source: BuildLogSource | None = None
    audit: AuditLogger | None = None
    max_log_lines: int = MAX_LOG_LINES
    diff_max_workers: int = 4
    diff_deadline_s: float | None = None

    # ---------- error-log fetch ----------

    def build_context(self, request: AutoFixRequest, *, correlation_id: str | None = None) -> ErrorContext:
        """
        Assemble the ErrorContext for a trigger. Missing or unavailable logs are valid input:
        the run proceeds with the generic "Build failed" message.
        """
        logs: List[str] = []
        if request.deployment_id and self.log_source is not None:
            try:
                logs = list(self.log_source.get_build_logs(request.deployment_id))
            except Exception as e:  # noqa: BLE001 (log source is optional evidence)
                self._audit(correlation_id, "logs.unavailable", {"deployment_id": request.deployment_id, "error": redact(str(e))})
                logs = []
        message = headline_error(logs) if logs else DEFAULT_ERROR_MESSAGE
        return ErrorContext(
            deployment_id=request.deployment_id or "unknown",
            project_name=f"{request.owner}/{request.repo}",
            branch=request.branch,
            commit_message="Auto-fix triggered",
            error_message=message,
            error_logs=logs[: self.max_log_lines],
        )

    def auto_fix(
        self,
        request: AutoFixRequest,
        *,
        on_transition: TransitionListener | None = None,
        cancel: threading.Event | None = None,
    ) -> PipelineRun:
        run_id = uuid.uuid4().hex
        ctx = self.build_context(request, correlation_id=run_id)
        repo = RepoRef(owner=request.owner, repo=request.repo, branch=request.branch)
        return self.run(ctx, repo, on_transition=on_transition, cancel=cancel, run_id=run_id)

    # ---------- pipeline ----------

    def run(
        self,
        ctx: ErrorContext,
        repo: RepoRef,
        *,
        on_transition: TransitionListener | None = None,
        cancel: threading.Event | None = None,
        run_id: str | None = None,
    ) -> PipelineRun:
        run_id = run_id or uuid.uuid4().hex
        state = TrackerState()
        scratch = _RunScratch()

        def emit(kind: TransitionKind, stage: StageId | None = None, **fields: Any) -> None:
            nonlocal state
            t = StepTransition(run_id=run_id, kind=kind, stage=stage, **fields)
            state = reduce_tracker(state, t)
            if on_transition is not None:
                on_transition(t)

        emit(TransitionKind.run_started)
        self._audit(
            run_id,
            "run.started",
            {
                "project": ctx.project_name,
                "repo": repo.full_name,
                "branch": repo.branch,
                "deployment_id": ctx.deployment_id,
                "error_message": redact(ctx.error_message),
                "log_lines": len(ctx.error_logs),
            },
        )

        error: ClassifiedError | None = None
        failed_stage: StageId | None = None
        cancelled = False

        for stage in STAGE_ORDER:
            if cancel is not None and cancel.is_set():
                cancelled = True
                self._audit(run_id, "run.cancelled", {"before_stage": stage.value})
                break

            emit(TransitionKind.stage_started, stage)
            self._audit(run_id, "stage.started", {"stage": stage.value})
            try:
                result, warning = self._run_stage(stage, ctx=ctx, repo=repo, scratch=scratch, run_id=run_id)
            except StageFailure as e:
                error = e.error
            except httpx.HTTPError as e:
                error = classify_transport_error(e)
            except Exception as e:  # noqa: BLE001 (a stage bug must still end the run with four steps)
                error = ClassifiedError(kind=ErrorKind.upstream_error, message=f"{type(e).__name__}: {e}")

            if error is not None:
                failed_stage = stage
                emit(TransitionKind.stage_failed, stage, error=error)
                self._audit(
                    run_id,
                    "stage.failed",
                    {"stage": stage.value, "kind": error.kind.value, "http_status": error.http_status, "message": redact(error.message)},
                )
                break

            emit(TransitionKind.stage_completed, stage, result=result, warning=warning)
            self._audit(
                run_id,
                "stage.completed",
                {"stage": stage.value, "fallback": warning is not None},
            )

        emit(TransitionKind.run_finished)
        run = PipelineRun(
            run_id=run_id,
            steps=list(state.steps),
            analysis=outcome_payload(scratch.analysis) if scratch.analysis is not None else None,
            fix=scratch.fix if error is None and not cancelled else None,
            explanation=_explanation(scratch.analysis, scratch.solutions) if scratch.analysis is not None else None,
            error=error,
            failed_stage=failed_stage,
            cancelled=cancelled,
        )
        self._audit(
            run_id,
            "run.finished",
            {
                "success": run.success,
                "failed_stage": failed_stage.value if failed_stage else None,
                "cancelled": cancelled,
                "changes": len(scratch.fix.changes) if scratch.fix else 0,
            },
        )
        return run

    def _run_stage(
        self,
        stage: StageId,
        *,
        ctx: ErrorContext,
        repo: RepoRef,
        scratch: _RunScratch,
        run_id: str,
    ) -> tuple[Dict[str, Any], ClassifiedError | None]:
        if stage == StageId.analyze:
            scratch.analysis = stages.analyze(self.gateway, ctx, max_log_lines=self.max_log_lines)
            return outcome_payload(scratch.analysis), outcome_warning(scratch.analysis)
        if stage == StageId.search:
            if scratch.analysis is None:
                raise ValueError("search stage requires the analyze outcome")
            scratch.solutions = stages.search(self.gateway, scratch.analysis)
            return outcome_payload(scratch.solutions), outcome_warning(scratch.solutions)
        if stage == StageId.generate:
            if scratch.analysis is None or scratch.solutions is None:
                raise ValueError("generate stage requires the analyze and search outcomes")
            scratch.plan = stages.generate(self.gateway, scratch.analysis, scratch.solutions)
            return outcome_payload(scratch.plan), outcome_warning(scratch.plan)
        if stage == StageId.pr:
            if scratch.plan is None:
                raise ValueError("pr stage requires the generate outcome")
            scratch.fix = self._prepare_pr(ctx=ctx, repo=repo, scratch=scratch, run_id=run_id)
            return scratch.fix.to_wire(), None
        raise ValueError(f"unknown stage: {stage}")

    def _prepare_pr(self, *, ctx: ErrorContext, repo: RepoRef, scratch: _RunScratch, run_id: str) -> FixPayload:
        plan = typed_value(scratch.plan) if scratch.plan is not None else None
        proposed = list(plan.changes) if plan is not None else []

        def _on_fetch_failed(path: str, exc: Exception) -> None:
            self._audit(run_id, "file.fetch_failed", {"path": path, "error": redact(f"{type(exc).__name__}: {exc}")})

        changes = prepare_file_changes(
            proposed,
            fetcher=self.file_fetcher,
            repo=repo,
            max_workers=self.diff_max_workers,
            deadline_s=self.diff_deadline_s,
            on_fetch_failed=_on_fetch_failed,
        )
        return FixPayload(
            title=(plan.pr_title.strip() if plan and plan.pr_title.strip() else DEFAULT_PR_TITLE),
            description=(
                plan.pr_description.strip()
                if plan and plan.pr_description.strip()
                else f"Automated fix for build error in {ctx.branch}"
            ),
            changes=changes,
            confidence=_confidence(scratch),
            commit_message=(plan.commit_message if plan and plan.commit_message else f"fix: {ctx.error_message[:72]}"),
        )

    def _audit(self, correlation_id: str | None, event_type: str, payload: Dict[str, Any]) -> None:
        if self.audit is None or correlation_id is None:
            return
        try:
            self.audit.write(correlation_id, event_type, payload)
        except OSError:
            # The audit trail must never change the outcome of a run.
            return


def _confidence(scratch: _RunScratch) -> int:
    solutions = typed_value(scratch.solutions) if scratch.solutions is not None else None
    rec = solutions.recommended() if solutions is not None else None
    value = rec.confidence if rec is not None else DEFAULT_CONFIDENCE
    outcomes = (scratch.analysis, scratch.solutions, scratch.plan)
    if any(isinstance(o, Fallback) for o in outcomes):
        value = min(value, FALLBACK_CONFIDENCE_CAP)
    return max(0, min(100, int(value)))


def _explanation(
    analysis: Optional[StageOutcome[AnalysisResult]],
    solutions: Optional[StageOutcome[SolutionSet]],
) -> str:
    parts: List[str] = []
    a = typed_value(analysis) if analysis is not None else None
    if a is not None:
        parts.append(f"Root cause ({a.error_type}, {a.severity}): {a.root_cause}")
    elif isinstance(analysis, Fallback):
        parts.append(analysis.raw_response)
    s = typed_value(solutions) if solutions is not None else None
    rec = s.recommended() if s is not None else None
    if rec is not None:
        parts.append(f"Fix: {rec.description}")
        parts.extend(f"{i}. {step}" for i, step in enumerate(rec.steps, start=1))
    return "\n".join(parts)
