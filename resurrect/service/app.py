from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from resurrect.classifier.errors import StageFailure, http_status_for, user_message
from resurrect.gitops.github_rest import FileFetcher, GitHubRestClient
from resurrect.llm.gateway_client import GatewayClient, ModelGateway
from resurrect.models import (
    AgentAction,
    AgentRequest,
    AnalysisResult,
    AutoFixRequest,
    DeploymentWebhook,
    ErrorContext,
    PipelineRun,
    RepoRef,
    SolutionSet,
    utcnow,
)
from resurrect.orchestrator.pipeline import PipelineOrchestrator
from resurrect.parsers.build_logs import DEFAULT_ERROR_MESSAGE
from resurrect.parsers.response_parser import parse_model_json
from resurrect.settings import Settings
from resurrect.sources.vercel_rest import BuildLogSource, VercelRestClient
from resurrect.stages import functions as stages
from resurrect.stages.outcome import outcome_from_wire, outcome_payload
from resurrect.telemetry.audit import AuditLogger


app = FastAPI(title="ResurrectCI", version="0.1.0")


def create_app(
    settings: Settings | None = None,
    *,
    gateway: ModelGateway | None = None,
    file_fetcher: FileFetcher | None = None,
    log_source: BuildLogSource | None = None,
) -> FastAPI:
    """
    App factory used by uvicorn and tests.

    Routes are registered on the module-level `app`; this configures its state.
    Collaborators default to the real HTTP clients built from settings; tests inject fakes.
    """
    s = settings or Settings()
    app.state.settings = s
    app.state.gateway = gateway
    app.state.file_fetcher = file_fetcher
    app.state.log_source = log_source
    # One logger per app: its lock serialises writes from concurrent requests.
    app.state.audit = AuditLogger(s.audit_log_path)
    return app


def _settings(request: Request) -> Settings:
    s = getattr(request.app.state, "settings", None)
    if s is None:
        s = Settings()
        request.app.state.settings = s
    return s


def _gateway(request: Request) -> ModelGateway:
    gw = getattr(request.app.state, "gateway", None)
    if gw is not None:
        return gw
    s = _settings(request)
    if not s.gateway_api_key:
        raise HTTPException(status_code=503, detail="RESURRECT_GATEWAY_API_KEY is not configured")
    return GatewayClient(
        api_key=s.gateway_api_key,
        base_url=s.gateway_base_url,
        model=s.gateway_model,
        temperature=s.gateway_temperature,
        timeout_s=s.gateway_timeout_s,
    )


def _file_fetcher(request: Request) -> FileFetcher:
    ff = getattr(request.app.state, "file_fetcher", None)
    if ff is not None:
        return ff
    s = _settings(request)
    return GitHubRestClient(token=s.github_token, api_base=s.github_api_base, timeout_s=s.github_timeout_s)


def _log_source(request: Request) -> BuildLogSource | None:
    ls = getattr(request.app.state, "log_source", None)
    if ls is not None:
        return ls
    s = _settings(request)
    if not s.vercel_token:
        return None
    return VercelRestClient(
        token=s.vercel_token,
        api_base=s.vercel_api_base,
        team_id=s.vercel_team_id,
        timeout_s=s.vercel_timeout_s,
    )


def _audit(request: Request) -> AuditLogger:
    audit = getattr(request.app.state, "audit", None)
    if audit is None:
        audit = AuditLogger(_settings(request).audit_log_path)
        request.app.state.audit = audit
    return audit


def _orchestrator(request: Request) -> PipelineOrchestrator:
    s = _settings(request)
    return PipelineOrchestrator(
        gateway=_gateway(request),
        file_fetcher=_file_fetcher(request),
        log_source=_log_source(request),
        audit=_audit(request),
        max_log_lines=s.max_log_lines,
        diff_max_workers=s.diff_max_workers,
        diff_deadline_s=s.diff_deadline_s,
    )


def _run_response(run: PipelineRun, *, extra: Dict[str, Any] | None = None) -> JSONResponse:
    steps = [st.to_wire() for st in run.steps]
    body: Dict[str, Any] = dict(extra or {})
    if run.error is not None:
        body.update(
            {
                "success": False,
                "error": user_message(run.error),
                "errorKind": run.error.kind.value,
                "failedStage": run.failed_stage.value if run.failed_stage else None,
                "steps": steps,
            }
        )
        return JSONResponse(status_code=http_status_for(run.error), content=body)

    if run.fix is None or not run.fix.changes:
        body.update({"success": False, "error": "No fixes generated", "analysis": run.analysis, "steps": steps})
        return JSONResponse(status_code=422, content=body)

    fix = run.fix.to_wire()
    body.update(
        {
            "success": True,
            "analysis": run.analysis,
            "fix": fix,
            "explanation": run.explanation,
            "steps": steps,
            "timestamp": utcnow().isoformat(),
        }
    )
    return JSONResponse(status_code=200, content=body)


@app.get("/health")
def health(request: Request) -> Dict[str, Any]:
    s = _settings(request)
    return {
        "ok": True,
        "gateway_configured": bool(s.gateway_api_key) or getattr(request.app.state, "gateway", None) is not None,
        "model": s.gateway_model,
    }


@app.post("/auto-fix")
def auto_fix(body: AutoFixRequest, request: Request) -> JSONResponse:
    orchestrator = _orchestrator(request)
    run = orchestrator.auto_fix(body)
    return _run_response(run)


@app.post("/webhooks/deployment")
def deployment_webhook(payload: DeploymentWebhook, request: Request) -> JSONResponse:
    if not payload.is_failure():
        return JSONResponse(content={"status": "ignored", "message": "Not a failure event"})

    dep = payload.deployment
    meta = dep.meta if dep is not None and dep.meta is not None else None
    repo_name = (meta.github_commit_repo if meta else None) or (dep.name if dep else None) or "unknown"
    owner = (meta.github_commit_org if meta else None) or ""
    branch = (meta.github_commit_ref if meta else None) or "main"
    logs = list(payload.error.logs) if payload.error is not None else []

    s = _settings(request)
    ctx = ErrorContext(
        deployment_id=dep.id if dep is not None else "unknown",
        project_name=f"{owner}/{repo_name}" if owner else repo_name,
        branch=branch,
        commit_message=(meta.github_commit_message if meta else None) or "",
        error_message=(payload.error.message if payload.error is not None else None) or DEFAULT_ERROR_MESSAGE,
        error_logs=logs[: s.max_log_lines],
    )
    run = _orchestrator(request).run(ctx, RepoRef(owner=owner, repo=repo_name, branch=branch))
    return _run_response(run, extra={"errorInfo": ctx.to_wire()})


def _loads_stage_input(text: str | None) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return parse_model_json(text)


@app.post("/ai-agent")
def ai_agent(body: AgentRequest, request: Request) -> JSONResponse:
    """
    Stage invocation protocol: run a single model-backed stage.
    """
    try:
        action = AgentAction(body.action)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": f"Unknown action: {body.action}"})

    gateway = _gateway(request)
    try:
        if action == AgentAction.analyze_error:
            if body.error_info is None:
                return JSONResponse(status_code=400, content={"error": "errorInfo is required"})
            outcome = stages.analyze(gateway, body.error_info, max_log_lines=_settings(request).max_log_lines)
        elif action == AgentAction.search_solution:
            analysis = outcome_from_wire(AnalysisResult, _loads_stage_input(body.error_analysis))
            outcome = stages.search(gateway, analysis)
        else:
            analysis = outcome_from_wire(AnalysisResult, _loads_stage_input(body.error_analysis))
            solutions = outcome_from_wire(SolutionSet, _loads_stage_input(body.search_results))
            outcome = stages.generate(gateway, analysis, solutions)
    except StageFailure as e:
        return JSONResponse(status_code=http_status_for(e.error), content={"error": user_message(e.error), "errorKind": e.error.kind.value})

    return JSONResponse(
        content={
            "action": action.value,
            "result": outcome_payload(outcome),
            "timestamp": utcnow().isoformat(),
        }
    )
