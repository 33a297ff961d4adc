from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, List, Union

import pytest

from resurrect.classifier.errors import StageFailure
from resurrect.models import ClassifiedError, ErrorKind


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep tests deterministic and isolated from developer machine env.
    """
    for k in list(os.environ.keys()):
        if k.startswith("RESURRECT_"):
            monkeypatch.delenv(k, raising=False)


Reply = Union[str, Exception]


class FakeGateway:
    """Scripted model gateway: returns (or raises) the queued replies in order."""

    def __init__(self, replies: List[Reply]):
        self._replies = list(replies)
        self.calls: List[Dict[str, str]] = []
        self._lock = threading.Lock()

    def complete(self, *, system: str, user: str) -> str:
        with self._lock:
            self.calls.append({"system": system, "user": user})
            if not self._replies:
                raise AssertionError("unexpected gateway call")
            reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeFetcher:
    """In-memory source-control file fetcher; values that are exceptions are raised."""

    def __init__(self, files: Dict[str, Union[str, Exception]]):
        self.files = dict(files)
        self.calls: List[Dict[str, str]] = []
        self._lock = threading.Lock()

    def fetch_file(self, *, owner: str, repo: str, path: str, branch: str) -> str:
        with self._lock:
            self.calls.append({"owner": owner, "repo": repo, "path": path, "branch": branch})
        v = self.files.get(path)
        if v is None:
            raise FileNotFoundError(path)
        if isinstance(v, Exception):
            raise v
        return v


def rate_limited() -> StageFailure:
    return StageFailure(ClassifiedError(kind=ErrorKind.rate_limited, http_status=429, message="Rate limit exceeded"))


ANALYSIS_JSON: Dict[str, Any] = {
    "errorType": "missing_module",
    "rootCause": "The stylesheet ./styles.css is imported by src/App.tsx but does not exist.",
    "affectedFile": "src/App.tsx",
    "affectedLine": 3,
    "severity": "high",
    "suggestedSearchQuery": "Module not found: Can't resolve './styles.css'",
}

SOLUTIONS_JSON: Dict[str, Any] = {
    "solutions": [
        {
            "description": "Create the missing stylesheet",
            "confidence": 85,
            "steps": ["Add src/styles.css", "Re-run the build"],
            "codeChanges": [{"file": "src/styles.css", "action": "create", "content": "body {}\n"}],
        },
        {
            "description": "Remove the import",
            "confidence": 60,
            "steps": ["Delete the import line"],
            "codeChanges": [],
        },
    ],
    "recommendedSolutionIndex": 0,
}

FIX_JSON: Dict[str, Any] = {
    "branchName": "resurrect-fix",
    "commitMessage": "fix: restore missing stylesheets",
    "changes": [
        {"file": "src/App.tsx", "action": "modify", "content": "import './styles.css';\nexport default App;\n"},
        {"file": "src/index.tsx", "action": "modify", "content": "import App from './App';\n"},
        {"file": "src/styles.css", "action": "create", "content": "body {}\n"},
    ],
    "prTitle": "Fix missing stylesheet import",
    "prDescription": "Adds the stylesheet referenced by App.tsx.",
}


def fenced(obj: Dict[str, Any]) -> str:
    return "Here is the result:\n```json\n" + json.dumps(obj, indent=2) + "\n```\n"


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def happy_replies() -> List[Reply]:
    return [fenced(ANALYSIS_JSON), json.dumps(SOLUTIONS_JSON), fenced(FIX_JSON)]


@pytest.fixture
def repo_files() -> Dict[str, Union[str, Exception]]:
    return {
        "src/App.tsx": "import './style.css';\nexport default App;\n",
        "src/index.tsx": "import App from './App'\n",
    }


@pytest.fixture
def sample_payloads() -> Dict[str, Dict[str, Any]]:
    return {"analysis": ANALYSIS_JSON, "solutions": SOLUTIONS_JSON, "fix": FIX_JSON}


@pytest.fixture
def rate_limit_failure():
    return rate_limited
