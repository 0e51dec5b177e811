"""pipeline.orchestrator

High-level entrypoints for the two review flows.

* :func:`run_binding_test` - correctness: does the binding still build and
  pass its tests against the candidate core?
* :func:`run_perf_compare` - performance: trunk pair vs branch pair through
  the comparison toolkit, report posted to the pull request.

Both flows are one linear sequence of stages::

    gate -> resolve -> acquire (parallel) -> override -> execute -> report -> cleanup

Design principles
-----------------
- Each stage raises its own error kind; the status of the run is that kind.
  Nothing is retried.
- A ConfigurationError aborts before any working directory exists.
- Cleanup always runs (``finally``), whatever failed before it, and never
  changes the run's status. Neither does a failed publish. It also runs once
  before acquisition, so leftovers of a killed run never reach this one.
- The compare flow holds exclusive host ownership from before the first
  checkout until after Cleanup.
- Collaborators are injected (:class:`Collaborators`) so every stage can be
  replaced in tests.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import platform
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, List, Optional, Sequence

from pipeline.acquisition import acquire_all, plan_compare_slots, plan_test_slots
from pipeline.bindings import BindingInfo
from pipeline.cancel import CancelToken
from pipeline.cleanup import WorkingState, cleanup
from pipeline.config import PipelineConfig, dump_config
from pipeline.errors import (
    BenchmarkError,
    BuildTestFailure,
    ConfigurationError,
    PublishError,
    ReviewCIError,
)
from pipeline.execution.runner import RESULTS_LOG_DIR, build_and_test, run_comparison
from pipeline.gate import evaluate_gate
from pipeline.host_lock import host_lock
from pipeline.models import (
    FLOW_COMPARE,
    FLOW_TEST,
    SLOT_BINDING,
    SLOT_BRANCH_BINDING,
    SLOT_BRANCH_CORE,
    SLOT_CORE,
    SLOT_PERF_KIT,
    SLOT_TRUNK_BINDING,
    SLOT_TRUNK_CORE,
    BenchmarkReport,
    GateDecision,
    Job,
    MaterializedSource,
    RevisionSet,
    RunContext,
    RunResult,
    RunStatus,
    SlotRequest,
    TestResult,
)
from pipeline.override import apply_override
from pipeline.reporter import ArtifactStore, CommentSink, publish, publish_test_failure
from pipeline.revisions import resolve_revisions

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Requests and collaborators
# ---------------------------------------------------------------------------


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


@dataclass(frozen=True)
class RunRequest:
    """Everything one job needs. Immutable for the run's duration."""

    context: RunContext
    job: Job
    config: PipelineConfig
    directive_texts: Sequence[str] = ()
    run_id: str = field(default_factory=new_run_id)

    # Set by the scheduler, which evaluates the gate once for all jobs.
    gate: Optional[GateDecision] = None

    @property
    def workdir(self) -> Path:
        return self.config.work_path / f"{self.run_id}-{self.job.name}"

    @property
    def report_path(self) -> Path:
        return self.workdir / f"{self.job.binding}-compare-report.md"


@dataclass
class Collaborators:
    """Stage implementations and sinks. Defaults are the real ones."""

    comments: CommentSink
    artifacts: Optional[ArtifactStore] = None
    token: Optional[str] = None
    cancel: CancelToken = field(default_factory=CancelToken)

    acquire: Callable[..., Dict[str, MaterializedSource]] = acquire_all
    override: Callable[..., Any] = apply_override
    build_and_test: Callable[..., TestResult] = build_and_test
    compare: Callable[..., BenchmarkReport] = run_comparison
    lock: Callable[..., ContextManager[Any]] = host_lock

    # Best-effort JSON record of each run under the artifacts root.
    record_dir: Optional[Path] = None


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _header(req: RunRequest, binding: BindingInfo) -> None:
    ctx = req.context
    print("\n========================================")
    print(f"▶ {binding.label} {req.job.flow} | PR #{ctx.pr_number} @ {ctx.head_sha[:12]} | run {req.run_id}")


def _gate(req: RunRequest) -> GateDecision:
    if req.gate is not None:
        return req.gate
    return evaluate_gate(req.context, req.config.target_branch)


def _publish_safely(fn: Callable[[], None], warnings: List[str]) -> None:
    try:
        fn()
    except PublishError as e:
        msg = f"publish failed: {e}"
        logger.warning(msg)
        warnings.append(msg)


def write_run_record(path: Path, req: RunRequest, result: RunResult, sources: Dict[str, MaterializedSource]) -> None:
    """Provenance record of what ran (safe, no secrets)."""
    data: Dict[str, Any] = {
        "run_id": req.run_id,
        "job": req.job.name,
        "pull_request": req.context.pr_number,
        "head_sha": req.context.head_sha,
        "repository": req.context.repository,
        "status": result.status.value,
        "error": result.error,
        "warnings": list(result.warnings),
        "revisions": result.revisions.as_dict() if result.revisions else None,
        "sources": {
            slot: {"repository": s.repository, "ref": s.ref, "commit": s.commit}
            for slot, s in sorted(sources.items())
        },
        "toolchain": req.config.toolchain,
        "elapsed_seconds": round(result.elapsed_seconds, 3),
        "finished": _now_iso(),
        "python_version": platform.python_version(),
    }
    if result.test_result is not None:
        data["test"] = {
            "passed": result.test_result.passed,
            "step": result.test_result.step,
            "exit_code": result.test_result.exit_code,
            "timed_out": result.test_result.timed_out,
        }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _finish(
    req: RunRequest,
    deps: Collaborators,
    *,
    status: RunStatus,
    t0: float,
    error: Optional[str] = None,
    warnings: Sequence[str] = (),
    revisions: Optional[RevisionSet] = None,
    test_result: Optional[TestResult] = None,
    report: Optional[BenchmarkReport] = None,
    sources: Optional[Dict[str, MaterializedSource]] = None,
) -> RunResult:
    warnings = list(warnings)
    result = RunResult(
        job=req.job,
        status=status,
        error=error,
        warnings=tuple(warnings),
        revisions=revisions,
        test_result=test_result,
        report=report,
        elapsed_seconds=time.monotonic() - t0,
    )

    if deps.record_dir is not None and status is not RunStatus.SKIPPED:
        # Never let record writing change the outcome of a run.
        try:
            write_run_record(deps.record_dir / req.job.name / "run.json", req, result, sources or {})
            dump_config(deps.record_dir / req.job.name / "config.yaml", req.config)
        except OSError as e:
            warnings.append(f"could not write run record: {e}")
            result = dataclasses.replace(result, warnings=tuple(warnings))

    icon = "✅" if not status.failed else "❌"
    print(f"{icon} {req.job.name}: {status.value}" + (f" ({error})" if error else ""))
    for w in result.warnings:
        print(f"  ⚠️  {w}")
    return result


def _resolve(req: RunRequest, binding: BindingInfo) -> RevisionSet:
    revisions = resolve_revisions(
        req.context,
        req.directive_texts,
        binding,
        baseline=req.config.target_branch,
    )
    print(
        "  Revisions : "
        f"trunk {revisions.trunk_binding_ref}/{revisions.trunk_core_ref}, "
        f"branch {revisions.branch_binding_ref}/{revisions.branch_core_ref}"
    )
    return revisions


# ---------------------------------------------------------------------------
# Planning (dry run)
# ---------------------------------------------------------------------------


def plan_run(req: RunRequest) -> List[SlotRequest]:
    """Resolve revisions and return the checkouts a job would perform."""
    binding = req.config.binding(req.job.binding)
    revisions = resolve_revisions(req.context, req.directive_texts, binding, baseline=req.config.target_branch)
    if req.job.flow == FLOW_TEST:
        return plan_test_slots(binding, revisions, core_repository=req.config.core_repository)
    return plan_compare_slots(
        binding,
        revisions,
        core_repository=req.config.core_repository,
        perf_kit=req.config.perf_kit,
    )


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


def run_binding_test(req: RunRequest, deps: Collaborators) -> RunResult:
    """Correctness flow: binding + candidate core, setup then test."""
    t0 = time.monotonic()
    config = req.config
    binding = config.binding(req.job.binding)
    _header(req, binding)

    decision = _gate(req)
    if not decision.run:
        return _finish(req, deps, status=RunStatus.SKIPPED, t0=t0, error=decision.reason)

    try:
        revisions = _resolve(req, binding)
    except ConfigurationError as e:
        return _finish(req, deps, status=e.status, t0=t0, error=str(e))

    state = WorkingState(workdir=req.workdir)
    warnings: List[str] = []
    status = RunStatus.SUCCESS
    error: Optional[str] = None
    test_result: Optional[TestResult] = None
    sources: Dict[str, MaterializedSource] = {}

    warnings.extend(cleanup(state))
    try:
        try:
            sources = deps.acquire(
                plan_test_slots(binding, revisions, core_repository=config.core_repository),
                state.workdir,
                token=deps.token,
                max_workers=config.max_workers,
                cancel=deps.cancel,
            )
            deps.cancel.raise_if_cancelled("override")
            deps.override(
                sources[SLOT_BINDING],
                sources[SLOT_CORE],
                manifest=binding.manifest,
                dependency=binding.dependency,
            )
            deps.cancel.raise_if_cancelled("build")
            test_result = deps.build_and_test(
                sources[SLOT_BINDING],
                config.toolchain,
                binding=binding,
                timeout_seconds=config.test_timeout_seconds,
                cancel=deps.cancel,
            )
            if not test_result.passed:
                why = "timed out" if test_result.timed_out else f"exit code {test_result.exit_code}"
                raise BuildTestFailure(f"{test_result.step} step failed ({why})", result=test_result)
        except ReviewCIError as e:
            status, error = e.status, str(e)

        if status is RunStatus.BUILD_TEST_FAILURE and test_result is not None:
            failed = test_result
            _publish_safely(
                lambda: publish_test_failure(
                    failed,
                    req.context,
                    binding=binding,
                    comments=deps.comments,
                    limit=config.comment_limit,
                ),
                warnings,
            )
    finally:
        warnings.extend(cleanup(state))

    return _finish(
        req,
        deps,
        status=status,
        t0=t0,
        error=error,
        warnings=warnings,
        revisions=revisions,
        test_result=test_result,
        sources=sources,
    )


def run_perf_compare(req: RunRequest, deps: Collaborators) -> RunResult:
    """Performance flow: trunk pair vs branch pair, report to the PR."""
    t0 = time.monotonic()
    config = req.config
    binding = config.binding(req.job.binding)
    _header(req, binding)

    decision = _gate(req)
    if not decision.run:
        return _finish(req, deps, status=RunStatus.SKIPPED, t0=t0, error=decision.reason)

    try:
        revisions = _resolve(req, binding)
    except ConfigurationError as e:
        return _finish(req, deps, status=e.status, t0=t0, error=str(e))

    warnings: List[str] = []
    status = RunStatus.SUCCESS
    error: Optional[str] = None
    report: Optional[BenchmarkReport] = None
    sources: Dict[str, MaterializedSource] = {}

    lock_timeout = config.lock_timeout_minutes * 60 if config.lock_timeout_minutes is not None else None
    try:
        with deps.lock(config.lock_file, owner=f"{req.run_id}/{req.job.name}", timeout_seconds=lock_timeout, cancel=deps.cancel):
            state = WorkingState(workdir=req.workdir, report_files=[req.report_path])
            if config.perf_kit_path is not None:
                state.log_dirs.append(config.perf_kit_path / RESULTS_LOG_DIR)
            # A run killed before its own Cleanup leaves logs and reports behind.
            warnings.extend(cleanup(state))
            try:
                try:
                    sources = deps.acquire(
                        plan_compare_slots(
                            binding,
                            revisions,
                            core_repository=config.core_repository,
                            perf_kit=config.perf_kit,
                        ),
                        state.workdir,
                        token=deps.token,
                        max_workers=config.max_workers,
                        cancel=deps.cancel,
                    )
                    perf_kit_dir = (
                        sources[SLOT_PERF_KIT].path if SLOT_PERF_KIT in sources else config.perf_kit_path
                    )
                    if perf_kit_dir is None:
                        raise ConfigurationError("No perf kit checkout or perf_kit.path configured")

                    for binding_slot, core_slot in (
                        (SLOT_TRUNK_BINDING, SLOT_TRUNK_CORE),
                        (SLOT_BRANCH_BINDING, SLOT_BRANCH_CORE),
                    ):
                        deps.cancel.raise_if_cancelled("override")
                        deps.override(
                            sources[binding_slot],
                            sources[core_slot],
                            manifest=binding.manifest,
                            dependency=binding.dependency,
                        )

                    deps.cancel.raise_if_cancelled("comparison")
                    report = deps.compare(
                        sources[SLOT_TRUNK_BINDING],
                        sources[SLOT_TRUNK_CORE],
                        sources[SLOT_BRANCH_BINDING],
                        sources[SLOT_BRANCH_CORE],
                        perf_kit_dir=perf_kit_dir,
                        binding=binding,
                        toolchain=config.toolchain,
                        report_path=req.report_path,
                        workloads=config.workloads,
                        cancel=deps.cancel,
                    )
                except BenchmarkError as e:
                    status, error, report = e.status, str(e), e.report
                except ReviewCIError as e:
                    status, error = e.status, str(e)

                if status in (RunStatus.SUCCESS, RunStatus.BENCHMARK_ERROR):
                    final_status = status
                    _publish_safely(
                        lambda: publish(
                            report,
                            req.context,
                            binding=binding,
                            comments=deps.comments,
                            artifacts=deps.artifacts,
                            status=final_status,
                            limit=config.comment_limit,
                        ),
                        warnings,
                    )
            finally:
                warnings.extend(cleanup(state))
    except ReviewCIError as e:
        # Lock acquisition failed or was cancelled; nothing was created.
        status, error = e.status, str(e)

    return _finish(
        req,
        deps,
        status=status,
        t0=t0,
        error=error,
        warnings=warnings,
        revisions=revisions,
        report=report,
        sources=sources,
    )


FLOW_RUNNERS: Dict[str, Callable[[RunRequest, Collaborators], RunResult]] = {
    FLOW_TEST: run_binding_test,
    FLOW_COMPARE: run_perf_compare,
}


def run_job(req: RunRequest, deps: Collaborators) -> RunResult:
    runner = FLOW_RUNNERS.get(req.job.flow)
    if runner is None:
        raise ConfigurationError(f"Unknown flow {req.job.flow!r}. Valid: {sorted(FLOW_RUNNERS)}")
    return runner(req, deps)
