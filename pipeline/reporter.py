"""pipeline.reporter

Publish a run's outcome: a pull request comment plus stored artifacts.

The comment body is the comparison report verbatim. When no report exists
(the toolkit failed early), a short failure summary with the tail of the
toolkit output is posted instead, so a human can still diagnose the run.

Publishing never decides a run's outcome. Every sink is attempted; failures
are collected into a single :class:`~pipeline.errors.PublishError` which the
orchestrator records as a warning before proceeding to Cleanup.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Protocol

import requests

from pipeline.bindings import BindingInfo
from pipeline.errors import PublishError
from pipeline.models import BenchmarkReport, RunContext, RunStatus, TestResult
from tools.github.api import MAX_COMMENT_CHARS, post_issue_comment
from tools.github.types import GitHubConfig

logger = logging.getLogger(__name__)


OUTPUT_TAIL_LINES = 60


class CommentSink(Protocol):
    def publish(self, text: str) -> None: ...


class ArtifactStore(Protocol):
    def store(self, name: str, path: Path) -> object: ...


class GitHubCommentSink:
    """Posts comments on one pull request through the REST API."""

    def __init__(self, cfg: GitHubConfig, pr_number: int) -> None:
        self.cfg = cfg
        self.pr_number = pr_number

    def publish(self, text: str) -> None:
        try:
            post_issue_comment(self.cfg, self.pr_number, text)
        except requests.RequestException as e:
            raise PublishError(f"Could not comment on {self.cfg.repository}#{self.pr_number}: {e}") from e


class ConsoleCommentSink:
    """Dry-run sink: prints the comment instead of posting it."""

    def __init__(self) -> None:
        self.published: List[str] = []

    def publish(self, text: str) -> None:
        self.published.append(text)
        print("\n----- pull request comment (not posted) -----")
        print(text)
        print("----- end of comment -----\n")


# ---------------------------------------------------------------------------
# Rendering (pure)
# ---------------------------------------------------------------------------


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join((text or "").rstrip().splitlines()[-lines:])


def truncate_comment(text: str, limit: int = MAX_COMMENT_CHARS, *, artifact: Optional[str] = None) -> str:
    """Cap ``text`` at ``limit`` characters, ending with a visible notice."""
    if len(text) <= limit:
        return text
    where = f" Full report: `{artifact}` artifact." if artifact else ""
    notice_template = "\n\n_(truncated: {n} characters omitted.{where})_"
    # Reserve room for the notice with the largest possible count.
    reserve = len(notice_template.format(n=len(text), where=where))
    keep = max(0, limit - reserve)
    notice = notice_template.format(n=len(text) - keep, where=where)
    return (text[:keep] + notice)[:limit]


def render_benchmark_comment(
    report: Optional[BenchmarkReport],
    *,
    binding: BindingInfo,
    status: RunStatus,
    limit: int = MAX_COMMENT_CHARS,
) -> str:
    if report is not None and report.has_report:
        text = report.report_path.read_text(encoding="utf-8", errors="replace")
        return truncate_comment(text, limit, artifact=binding.report_artifact)

    lines = [
        f"### {binding.label} performance comparison did not produce a report",
        "",
        f"Status: `{status.value}`",
    ]
    if report is not None and report.output.strip():
        lines += ["", "```", _tail(report.output), "```"]
    lines += ["", f"Raw logs (if any) are in the `{binding.log_artifact}` artifact."]
    return truncate_comment("\n".join(lines), limit)


def render_test_failure_comment(
    result: TestResult,
    *,
    binding: BindingInfo,
    limit: int = MAX_COMMENT_CHARS,
) -> str:
    why = "timed out" if result.timed_out else f"exited with code {result.exit_code}"
    lines = [
        f"### {binding.label} binding tests failed",
        "",
        f"The `{result.step}` step {why}.",
        "",
        "```",
        _tail(result.output),
        "```",
    ]
    return truncate_comment("\n".join(lines), limit)


# ---------------------------------------------------------------------------
# Publishing (side effects)
# ---------------------------------------------------------------------------


def publish(
    report: Optional[BenchmarkReport],
    context: RunContext,
    *,
    binding: BindingInfo,
    comments: CommentSink,
    artifacts: Optional[ArtifactStore] = None,
    status: RunStatus = RunStatus.SUCCESS,
    limit: int = MAX_COMMENT_CHARS,
) -> None:
    """Post the report as a comment and store report + logs as artifacts."""
    errors: List[str] = []

    try:
        comments.publish(render_benchmark_comment(report, binding=binding, status=status, limit=limit))
        print(f"  💬 Posted {binding.label} comparison to PR #{context.pr_number}")
    except (PublishError, OSError) as e:
        errors.append(f"comment: {e}")

    if artifacts is not None and report is not None:
        for name, path in (
            (binding.report_artifact, report.report_path),
            (binding.log_artifact, report.log_dir),
        ):
            if not path.exists():
                logger.info("artifact %s skipped: %s does not exist", name, path)
                continue
            try:
                artifacts.store(name, path)
            except (PublishError, OSError, ValueError) as e:
                errors.append(f"artifact {name}: {e}")

    if errors:
        raise PublishError("; ".join(errors))


def publish_test_failure(
    result: TestResult,
    context: RunContext,
    *,
    binding: BindingInfo,
    comments: CommentSink,
    limit: int = MAX_COMMENT_CHARS,
) -> None:
    try:
        comments.publish(render_test_failure_comment(result, binding=binding, limit=limit))
        print(f"  💬 Posted {binding.label} test failure to PR #{context.pr_number}")
    except (PublishError, OSError) as e:
        raise PublishError(f"comment: {e}") from e
