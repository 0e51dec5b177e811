"""pipeline.pipeline

This module defines a *single, high-level* object that represents this repo's
primary capabilities.

Why this exists
---------------
A review run is implemented across several modules:

- :mod:`pipeline.orchestrator` runs one job (test or compare flow).
- :mod:`pipeline.scheduler` expands an event into jobs and loops over them.
- :mod:`pipeline.revisions` and :mod:`pipeline.gate` answer "what" and "whether".

Callers (CLI, CI workflow, tests) should not have to wire those together
themselves. The :class:`~pipeline.pipeline.ReviewPipeline` facade gives the
repo one obvious entrypoint with a small API:

- ``gate(ctx)``: would this event run at all?
- ``plan(ctx, ...)``: which checkouts would each job perform (dry run)?
- ``run(ctx, ...)``: run the jobs and return their results.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Dict, List, Optional

from pipeline.config import PipelineConfig
from pipeline.gate import evaluate_gate
from pipeline.models import GateDecision, Job, RunContext, RunResult, SlotRequest
from pipeline.orchestrator import Collaborators, RunRequest, new_run_id, plan_run, run_job
from pipeline.scheduler import plan_jobs, run_jobs


class ReviewPipeline:
    """High-level facade over the pipeline.

    Callers should prefer using this object (built via :func:`pipeline.wiring.build_pipeline`)
    rather than importing low-level modules directly.
    """

    def __init__(
        self,
        config: PipelineConfig,
        deps: Collaborators,
        *,
        run_id: Optional[str] = None,
        run_fn: Callable[[RunRequest, Collaborators], RunResult] = run_job,
    ) -> None:
        self.config = config
        self.deps = deps
        self.run_id = run_id or new_run_id()
        self._run_fn = run_fn

    def gate(self, ctx: RunContext) -> GateDecision:
        return evaluate_gate(ctx, self.config.target_branch)

    def jobs(self, *, bindings: Optional[Sequence[str]] = None, flows: Optional[Sequence[str]] = None) -> List[Job]:
        return plan_jobs(self.config, flows=flows, bindings=bindings)

    def _request(self, ctx: RunContext, job: Job, texts: Sequence[str], gate: Optional[GateDecision] = None) -> RunRequest:
        return RunRequest(
            context=ctx,
            job=job,
            config=self.config,
            directive_texts=tuple(texts),
            run_id=self.run_id,
            gate=gate,
        )

    def plan(
        self,
        ctx: RunContext,
        *,
        directive_texts: Sequence[str] = (),
        bindings: Optional[Sequence[str]] = None,
        flows: Optional[Sequence[str]] = None,
    ) -> Dict[str, List[SlotRequest]]:
        """Checkouts per job, without touching the host. Raises ConfigurationError."""
        return {
            job.name: plan_run(self._request(ctx, job, directive_texts))
            for job in self.jobs(bindings=bindings, flows=flows)
        }

    def run(
        self,
        ctx: RunContext,
        *,
        directive_texts: Sequence[str] = (),
        bindings: Optional[Sequence[str]] = None,
        flows: Optional[Sequence[str]] = None,
    ) -> List[RunResult]:
        jobs = self.jobs(bindings=bindings, flows=flows)
        return run_jobs(
            ctx,
            jobs,
            lambda job, decision: self._run_fn(self._request(ctx, job, directive_texts, decision), self.deps),
            target_branch=self.config.target_branch,
            cancel=self.deps.cancel,
        )
