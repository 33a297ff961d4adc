from __future__ import annotations

import concurrent.futures
import difflib
import time
from typing import Callable, List, Sequence

from resurrect.gitops.github_rest import FileFetcher
from resurrect.models import FileChange, ProposedChange, RepoRef


FetchFailureHook = Callable[[str, Exception], None]


def unified_diff(*, path: str, old: str, new: str) -> str:
    old_lines = old.splitlines(True)
    new_lines = new.splitlines(True)
    return "".join(
        difflib.unified_diff(
            old_lines,
            new_lines,
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            n=3,
        )
    )


def _file_change(change: ProposedChange, original: str) -> FileChange:
    after = "" if change.action == "delete" else change.content
    return FileChange(
        path=change.file,
        original_content=original,
        new_content=after,
        action=change.action,
        diff=unified_diff(path=change.file, old=original, new=after),
    )


def prepare_file_changes(
    changes: Sequence[ProposedChange],
    *,
    fetcher: FileFetcher,
    repo: RepoRef,
    max_workers: int = 4,
    deadline_s: float | None = None,
    on_fetch_failed: FetchFailureHook | None = None,
) -> List[FileChange]:
    """
    Pair every proposed change with the file's current content on `repo.branch`.

    Fetches run concurrently (bounded by `max_workers`). Output has the same length and
    order as `changes`: a failed, timed-out or late fetch leaves `original_content` empty
    instead of dropping the entry or aborting the others.
    """
    if not changes:
        return []

    workers = max(1, min(int(max_workers), len(changes)))
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resurrect_fetch")
    try:
        futures = [
            pool.submit(fetcher.fetch_file, owner=repo.owner, repo=repo.repo, path=c.file, branch=repo.branch)
            for c in changes
        ]
        deadline = (time.monotonic() + deadline_s) if deadline_s is not None else None

        out: List[FileChange] = []
        for change, fut in zip(changes, futures):
            timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                original = fut.result(timeout=timeout)
                if not isinstance(original, str):
                    original = ""
            except Exception as e:  # noqa: BLE001 (one file must not abort the others)
                if isinstance(e, concurrent.futures.TimeoutError):
                    fut.cancel()
                if on_fetch_failed is not None:
                    on_fetch_failed(change.file, e)
                original = ""
            out.append(_file_change(change, original))
        return out
    finally:
        # Late fetches past the deadline are abandoned; their results are never read.
        pool.shutdown(wait=False, cancel_futures=True)
