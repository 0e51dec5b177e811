"""pipeline.scheduler

Expand a pull request event into jobs and run them one after another.

The gate is evaluated once per event; every job sees the same decision. Jobs
run sequentially in an explicit loop; comparisons on the same host would
serialize on the host lock anyway.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Sequence

from pipeline.bindings import DEFAULT_BINDINGS
from pipeline.cancel import CancelToken
from pipeline.config import PipelineConfig
from pipeline.errors import ConfigurationError
from pipeline.gate import evaluate_gate
from pipeline.models import FLOWS, GateDecision, Job, RunContext, RunResult, RunStatus, worst_status

logger = logging.getLogger(__name__)


RunJobFn = Callable[[Job, GateDecision], RunResult]


def plan_jobs(
    config: PipelineConfig,
    flows: Optional[Sequence[str]] = None,
    bindings: Optional[Sequence[str]] = None,
) -> List[Job]:
    """One job per (binding, flow). Order: bindings outer, flows inner."""
    flows = list(flows or FLOWS)
    bindings = list(bindings or DEFAULT_BINDINGS)

    for flow in flows:
        if flow not in FLOWS:
            raise ConfigurationError(f"Unknown flow {flow!r}. Valid: {list(FLOWS)}")
    for key in bindings:
        # Validates the key and any config overrides for it.
        config.binding(key)

    jobs: List[Job] = []
    for key in dict.fromkeys(bindings):
        for flow in dict.fromkeys(flows):
            jobs.append(Job(binding=key, flow=flow))
    return jobs


def run_jobs(
    ctx: RunContext,
    jobs: Iterable[Job],
    run_job: RunJobFn,
    *,
    target_branch: str = "master",
    cancel: Optional[CancelToken] = None,
) -> List[RunResult]:
    decision = evaluate_gate(ctx, target_branch)
    if decision.run:
        print(f"🔓 Gate open for PR #{ctx.pr_number}: {decision.reason}")
    else:
        print(f"⏭️  Skipping PR #{ctx.pr_number}: {decision.reason}")

    results: List[RunResult] = []
    for job in jobs:
        if cancel is not None and cancel.cancelled:
            results.append(RunResult(job=job, status=RunStatus.CANCELLED, error=f"not started: {cancel.reason}"))
            continue
        results.append(run_job(job, decision))
    return results


def overall_status(results: Iterable[RunResult]) -> RunStatus:
    return worst_status(r.status for r in results)


def print_summary(results: Sequence[RunResult]) -> None:
    if not results:
        return
    print("\n========================================")
    print("Summary")
    width = max(len(r.job.name) for r in results)
    for r in results:
        icon = "✅" if r.status is RunStatus.SUCCESS else ("⏭️ " if r.status is RunStatus.SKIPPED else "❌")
        print(f"  {icon} {r.job.name:<{width}}  {r.status.value:<20} {r.elapsed_seconds:7.1f}s")
    print(f"Overall: {overall_status(results).value}")
