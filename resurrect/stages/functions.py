from __future__ import annotations

from resurrect.llm.gateway_client import ModelGateway
from resurrect.models import AnalysisResult, ErrorContext, FixPlan, SolutionSet, StageId
from resurrect.parsers.response_parser import parse_model_json
from resurrect.prompting.meta import SYSTEM_PROMPT_V1
from resurrect.prompting.templates import MAX_LOG_LINES, render_prompt
from resurrect.stages.outcome import StageOutcome, outcome_payload, validate_stage_payload


def analyze(
    gateway: ModelGateway, ctx: ErrorContext, *, max_log_lines: int = MAX_LOG_LINES
) -> StageOutcome[AnalysisResult]:
    """
    Stage 1: root-cause analysis of the build failure.
    Gateway failures propagate as StageFailure.
    """
    user = render_prompt(StageId.analyze, ctx=ctx, max_log_lines=max_log_lines)
    raw = gateway.complete(system=SYSTEM_PROMPT_V1, user=user)
    return validate_stage_payload(AnalysisResult, parse_model_json(raw), raw=raw)


def search(gateway: ModelGateway, analysis: StageOutcome[AnalysisResult]) -> StageOutcome[SolutionSet]:
    """Stage 2: candidate solutions for the analysed error."""
    user = render_prompt(StageId.search, analysis=outcome_payload(analysis))
    raw = gateway.complete(system=SYSTEM_PROMPT_V1, user=user)
    return validate_stage_payload(SolutionSet, parse_model_json(raw), raw=raw)


def generate(
    gateway: ModelGateway,
    analysis: StageOutcome[AnalysisResult],
    solutions: StageOutcome[SolutionSet],
) -> StageOutcome[FixPlan]:
    """Stage 3: concrete fix plan (file contents, commit message, PR text)."""
    user = render_prompt(
        StageId.generate,
        analysis=outcome_payload(analysis),
        solutions=outcome_payload(solutions),
    )
    raw = gateway.complete(system=SYSTEM_PROMPT_V1, user=user)
    return validate_stage_payload(FixPlan, parse_model_json(raw), raw=raw)
