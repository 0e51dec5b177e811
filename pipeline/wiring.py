"""pipeline.wiring

This module is the **composition root** for the Python runtime.

"Composition root" means: the single place where we *assemble* the running
application from its building blocks:

- load configuration / environment variables
- choose real vs stub implementations (console sink for dry runs)
- build the high-level pipeline facade object

Keeping this wiring in one place prevents configuration and dependency setup
from being duplicated across entrypoints (CLI, CI workflow, tests).

Environment
-----------
``GITHUB_TOKEN``       posts comments and reads directives.
``CI_ACCESS_TOKEN``    clones the repositories (falls back to ``GITHUB_TOKEN``).
``GITHUB_REPOSITORY``  ``owner/name`` of the core repository's pull requests.
``GITHUB_RUN_ID``      used as the run id when present.
``GITHUB_EVENT_PATH``  default event payload for ``--event-path``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from pipeline.cancel import CancelToken
from pipeline.config import PipelineConfig
from pipeline.orchestrator import Collaborators, new_run_id
from pipeline.pipeline import ReviewPipeline
from pipeline.reporter import CommentSink, ConsoleCommentSink, GitHubCommentSink
from tools.artifacts import LocalArtifactStore
from tools.github.types import GitHubConfig


ROOT_DIR: Path = Path(__file__).resolve().parents[1]
ENV_PATH: Path = ROOT_DIR / ".env"


def load_env(dotenv_path: Path = ENV_PATH) -> None:
    """Load ``.env`` without overriding variables already exported."""
    if dotenv_path.exists():
        load_dotenv(dotenv_path, override=False)


def github_config(config: PipelineConfig, repository: Optional[str] = None) -> Optional[GitHubConfig]:
    """GitHub API settings, or ``None`` when no token/repository is known."""
    token = os.getenv("GITHUB_TOKEN")
    repository = repository or os.getenv("GITHUB_REPOSITORY")
    if not token or not repository:
        return None
    return GitHubConfig(token=token, repository=repository, api_root=config.github_api)


def checkout_token() -> Optional[str]:
    return os.getenv("CI_ACCESS_TOKEN") or os.getenv("GITHUB_TOKEN") or None


def default_run_id() -> str:
    run_id = os.getenv("GITHUB_RUN_ID")
    if not run_id:
        return new_run_id()
    # Re-runs of a workflow keep GITHUB_RUN_ID and bump the attempt.
    attempt = os.getenv("GITHUB_RUN_ATTEMPT")
    return f"{run_id}.{attempt}" if attempt else run_id


def build_pipeline(
    config: PipelineConfig,
    *,
    pr_number: int,
    repository: Optional[str] = None,
    dry_run: bool = False,
    cancel: Optional[CancelToken] = None,
    run_id: Optional[str] = None,
    dotenv: bool = True,
) -> ReviewPipeline:
    """Build the high-level pipeline facade for one pull request.

    Without a GitHub token (or with ``dry_run``) comments are printed instead
    of posted; artifacts are always stored locally under
    ``<artifacts_root>/<run_id>/``.
    """
    if dotenv:
        load_env(ENV_PATH)

    run_id = run_id or default_run_id()
    gh = None if dry_run else github_config(config, repository)

    comments: CommentSink
    if gh is not None:
        comments = GitHubCommentSink(gh, pr_number)
    else:
        comments = ConsoleCommentSink()

    artifacts_dir = config.artifacts_path / run_id
    deps = Collaborators(
        comments=comments,
        artifacts=LocalArtifactStore(artifacts_dir),
        token=checkout_token(),
        cancel=cancel or CancelToken(),
        record_dir=artifacts_dir,
    )
    return ReviewPipeline(config, deps, run_id=run_id)
