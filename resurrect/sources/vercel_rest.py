from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Protocol

import httpx

from resurrect.parsers.build_logs import extract_log_lines, parse_event_stream


class BuildLogSource(Protocol):
    def get_build_logs(self, deployment_id: str) -> List[str]: ...


@dataclass(frozen=True)
class VercelRestClient:
    """
    Reads build output for a deployment.

    Endpoint: GET {api_base}/v2/deployments/{id}/events (JSON array or NDJSON)
    """

    token: str
    api_base: str = "https://api.vercel.com"
    team_id: str | None = None
    timeout_s: float = 15.0
    transport: httpx.BaseTransport | None = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def get_build_logs(self, deployment_id: str) -> List[str]:
        if not deployment_id:
            raise ValueError("deployment_id is required")
        url = f"{self.api_base.rstrip('/')}/v2/deployments/{deployment_id}/events"
        params = {"teamId": self.team_id} if self.team_id else None
        with httpx.Client(timeout=self.timeout_s, transport=self.transport) as c:
            r = c.get(url, headers=self._headers(), params=params)
            r.raise_for_status()
            text = r.text
        return extract_log_lines(parse_event_stream(text))
