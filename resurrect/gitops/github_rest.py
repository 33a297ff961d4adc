from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Protocol

import httpx


class FileFetcher(Protocol):
    def fetch_file(self, *, owner: str, repo: str, path: str, branch: str) -> str: ...


@dataclass(frozen=True)
class GitHubRestClient:
    """
    Minimal GitHub REST wrapper used to read the current content of files a fix touches.

    Notes:
    - Read-only: opening the pull request is left to the caller's source-control client.
    - Mockable in tests through an httpx transport override.
    """

    token: str | None = None
    api_base: str = "https://api.github.com"
    timeout_s: float = 15.0
    transport: httpx.BaseTransport | None = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "ResurrectCI-Agent",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout_s, transport=self.transport)

    def get_contents(self, *, owner: str, repo: str, path: str, ref: str) -> Dict[str, Any]:
        # GET /repos/{owner}/{repo}/contents/{path}?ref={ref}
        url = f"{self.api_base}/repos/{owner}/{repo}/contents/{path.lstrip('/')}"
        with self._client() as c:
            r = c.get(url, headers=self._headers(), params={"ref": ref})
            r.raise_for_status()
            data = r.json()
        if not isinstance(data, dict):
            # A directory listing comes back as a list.
            raise ValueError(f"not a file: {path}")
        return data

    def fetch_file(self, *, owner: str, repo: str, path: str, branch: str) -> str:
        data = self.get_contents(owner=owner, repo=repo, path=path, ref=branch)
        return decode_content(data)


def decode_content(data: Dict[str, Any]) -> str:
    """
    Decode the Contents API payload. GitHub wraps base64 at 60 columns, hence the newline strip.
    """
    if isinstance(data.get("decodedContent"), str):
        return data["decodedContent"]
    content = data.get("content")
    if not content:
        return ""
    raw = base64.b64decode(str(content).replace("\n", ""))
    return raw.decode("utf-8", errors="replace")
