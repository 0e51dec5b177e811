"""pipeline.events

Build a :class:`~pipeline.models.RunContext` from a GitHub ``pull_request``
event payload (``$GITHUB_EVENT_PATH``) or from explicit CLI values, and gather
the texts that may carry override directives.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

import requests

from pipeline.errors import ConfigurationError
from pipeline.models import RunContext
from tools.github.api import list_issue_comments
from tools.github.types import GitHubConfig


def context_from_event(payload: Mapping[str, Any]) -> RunContext:
    pr = payload.get("pull_request")
    if not isinstance(pr, dict):
        raise ConfigurationError("Event payload has no pull_request object")

    number = pr.get("number") or payload.get("number")
    head_sha = (pr.get("head") or {}).get("sha")
    if not number or not head_sha:
        raise ConfigurationError("Event payload is missing the pull request number or head sha")

    labels_raw = pr.get("labels")
    labels = None
    if isinstance(labels_raw, list):
        labels = frozenset(
            str(lbl["name"]) for lbl in labels_raw if isinstance(lbl, dict) and lbl.get("name")
        )

    return RunContext(
        pr_number=int(number),
        head_sha=str(head_sha),
        labels=labels,
        event=str(payload.get("action") or ""),
        base_ref=str((pr.get("base") or {}).get("ref") or ""),
        repository=(payload.get("repository") or {}).get("full_name"),
        body=str(pr.get("body") or ""),
    )


def load_event(path: str | Path) -> RunContext:
    p = Path(path).expanduser()
    if not p.is_file():
        raise ConfigurationError(f"Event payload not found: {p}")
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Event payload is not valid JSON: {p}: {e}") from e
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Event payload must be a JSON object: {p}")
    return context_from_event(payload)


def context_from_args(
    *,
    pr_number: int,
    head_sha: str,
    labels: Optional[Iterable[str]],
    event: str = "labeled",
    base_ref: str = "master",
    repository: Optional[str] = None,
    body: str = "",
) -> RunContext:
    return RunContext(
        pr_number=int(pr_number),
        head_sha=head_sha,
        labels=frozenset(labels) if labels is not None else None,
        event=event,
        base_ref=base_ref,
        repository=repository,
        body=body,
    )


def directive_texts(ctx: RunContext, github: Optional[GitHubConfig] = None) -> List[str]:
    """PR description first, then comments oldest to newest.

    Without GitHub credentials only the description is used. A failed comment
    lookup is a configuration problem: running against default revisions when
    the author asked for others would produce a misleading result.
    """
    texts = [ctx.body] if ctx.body else []
    if github is None:
        return texts
    try:
        comments = list_issue_comments(github, ctx.pr_number)
    except (requests.RequestException, RuntimeError) as e:
        raise ConfigurationError(f"Could not read comments of PR #{ctx.pr_number}: {e}") from e
    texts.extend(str(c.get("body") or "") for c in comments if isinstance(c, dict))
    return texts
