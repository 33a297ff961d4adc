from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from resurrect.classifier.errors import user_message
from resurrect.models import (
    AgentStep,
    ErrorContext,
    RepoRef,
    StageId,
    StepStatus,
    StepTransition,
    TransitionKind,
    initial_steps,
)

if TYPE_CHECKING:
    from resurrect.orchestrator.pipeline import PipelineOrchestrator


@dataclass(frozen=True)
class TrackerState:
    run_id: Optional[str] = None
    is_running: bool = False
    steps: Tuple[AgentStep, ...] = field(default_factory=lambda: tuple(initial_steps()))
    current_step: Optional[StageId] = None

    def step(self, stage: StageId) -> AgentStep:
        for s in self.steps:
            if s.id == stage:
                return s
        raise KeyError(stage)

    def view(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "steps": [s.to_wire() for s in self.steps],
            "currentStep": self.current_step.value if self.current_step else None,
        }


def _update_step(steps: Tuple[AgentStep, ...], stage: StageId, **updates: Any) -> Tuple[AgentStep, ...]:
    return tuple(s.model_copy(update=updates) if s.id == stage else s for s in steps)


def reduce_tracker(state: TrackerState, t: StepTransition) -> TrackerState:
    """
    Pure reducer over orchestrator transitions.

    `run_started` always resets to four pending steps for the new run. Every other
    transition is ignored unless it belongs to the current run. StepTracker only feeds
    it transitions of the run it is attached to.
    """
    if t.kind == TransitionKind.run_started:
        return TrackerState(run_id=t.run_id, is_running=True, steps=tuple(initial_steps()), current_step=None)

    if state.run_id is None or t.run_id != state.run_id:
        return state

    if t.kind == TransitionKind.run_finished:
        return replace(state, is_running=False, current_step=None)

    if t.stage is None:
        return state

    if t.kind == TransitionKind.stage_started:
        return replace(
            state,
            steps=_update_step(state.steps, t.stage, status=StepStatus.running, error=None, warning=None),
            current_step=t.stage,
        )
    if t.kind == TransitionKind.stage_completed:
        return replace(
            state,
            steps=_update_step(
                state.steps,
                t.stage,
                status=StepStatus.completed,
                result=t.result,
                timestamp=t.timestamp,
                warning=t.warning,
            ),
        )
    if t.kind == TransitionKind.stage_failed:
        return replace(
            state,
            steps=_update_step(
                state.steps,
                t.stage,
                status=StepStatus.error,
                error=t.error,
                timestamp=t.timestamp,
            ),
        )
    return state


class StepTracker:
    """
    Caller-side read model of one session's pipeline progress.

    Holds no business logic: state changes only through `dispatch()` of orchestrator
    transitions for the attached run (and `abandon()`, which detaches from it).
    """

    def __init__(self, orchestrator: "PipelineOrchestrator"):
        self._orchestrator = orchestrator
        self._lock = threading.Lock()
        self._state = TrackerState()
        self._run_id: str | None = None
        self._cancel: threading.Event | None = None

    def attach(self, run_id: str) -> threading.Event:
        """
        Follow `run_id` from now on. The previously attached run is cancelled and
        every transition it still emits, including a late `run_started`, is dropped.
        """
        cancel = threading.Event()
        with self._lock:
            if self._cancel is not None:
                self._cancel.set()
            self._cancel = cancel
            self._run_id = run_id
        return cancel

    def dispatch(self, t: StepTransition) -> None:
        with self._lock:
            if self._run_id is None or t.run_id != self._run_id:
                return
            self._state = reduce_tracker(self._state, t)

    @property
    def state(self) -> TrackerState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def steps(self) -> Tuple[AgentStep, ...]:
        return self.state.steps

    @property
    def current_step(self) -> Optional[StageId]:
        return self.state.current_step

    def snapshot(self) -> Dict[str, Any]:
        return self.state.view()

    def abandon(self) -> None:
        """
        Stop following the current run. The orchestrator halts at the next stage
        boundary; anything it still emits for that run is ignored.
        """
        with self._lock:
            if self._cancel is not None:
                self._cancel.set()
            self._cancel = None
            self._run_id = None
            finished = replace(self._state, is_running=False, current_step=None)
            self._state = replace(finished, run_id=None)

    def run_agent(self, ctx: ErrorContext, repo: RepoRef) -> Dict[str, Any]:
        run_id = uuid.uuid4().hex
        cancel = self.attach(run_id)
        run = self._orchestrator.run(
            ctx,
            repo,
            on_transition=self.dispatch,
            cancel=cancel,
            run_id=run_id,
        )
        if run.success and run.fix is not None:
            return {"success": True, "fix": run.fix.to_wire()}
        if run.error is not None:
            return {"success": False, "error": user_message(run.error), "errorKind": run.error.kind.value}
        if run.cancelled:
            return {"success": False, "error": "Run abandoned"}
        return {"success": False, "error": "No fixes generated"}
