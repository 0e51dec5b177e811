"""tools/github/api.py

All GitHub HTTP calls live here.

Design goals:
  - Keep network I/O separated from the pipeline's decision logic.
  - Raise on HTTP errors (``requests.HTTPError``); callers decide whether a
    failure is fatal (directive lookup) or a warning (publishing).
"""

from __future__ import annotations

from typing import Any, Dict, List

import requests

from .types import GitHubConfig

# GitHub rejects issue comment bodies above this many characters.
MAX_COMMENT_CHARS = 65536

PER_PAGE = 100


def _headers(cfg: GitHubConfig) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {cfg.token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _repo_url(cfg: GitHubConfig) -> str:
    return f"{cfg.api_root.rstrip('/')}/repos/{cfg.repository}"


def list_issue_comments(cfg: GitHubConfig, number: int) -> List[Dict[str, Any]]:
    """All comments on a pull request, oldest first (follows pagination)."""
    url = f"{_repo_url(cfg)}/issues/{number}/comments"
    out: List[Dict[str, Any]] = []
    page = 1
    while True:
        resp = requests.get(
            url,
            headers=_headers(cfg),
            params={"per_page": PER_PAGE, "page": page},
            timeout=30,
        )
        resp.raise_for_status()
        batch = resp.json() or []
        if not isinstance(batch, list):
            raise RuntimeError(f"Unexpected comments payload from {url}: {type(batch).__name__}")
        out.extend(batch)
        if len(batch) < PER_PAGE:
            return out
        page += 1


def post_issue_comment(cfg: GitHubConfig, number: int, body: str) -> Dict[str, Any]:
    resp = requests.post(
        f"{_repo_url(cfg)}/issues/{number}/comments",
        headers=_headers(cfg),
        json={"body": body},
        timeout=30,
    )
    resp.raise_for_status()
    return resp.json()
