from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RESURRECT_", extra="ignore")

    # Model gateway (OpenAI-compatible chat completions)
    gateway_api_key: str | None = None
    gateway_base_url: str = "https://ai.gateway.lovable.dev/v1"
    gateway_model: str = "google/gemini-2.5-flash"
    gateway_temperature: float = 0.3
    # Deadline for a single stage call. Exceeding it is reported as upstream_error.
    gateway_timeout_s: float = 60.0

    # Source control (file-fetch collaborator)
    github_token: str | None = None
    github_api_base: str = "https://api.github.com"
    github_timeout_s: float = 15.0

    # Deployment platform (build-log collaborator)
    vercel_token: str | None = None
    vercel_api_base: str = "https://api.vercel.com"
    vercel_team_id: str | None = None
    vercel_timeout_s: float = 15.0

    # Prompt size guard: only the first N log lines are sent to the model.
    max_log_lines: int = 50

    # Diff preparation fan-out
    diff_max_workers: int = 4
    # Overall deadline for the whole fan-out (None: rely on per-request timeouts only).
    diff_deadline_s: float | None = 45.0

    audit_log_path: str = "var/audit/resurrect_audit.jsonl"
