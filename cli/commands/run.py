from __future__ import annotations

from typing import List, Optional, Sequence

from pipeline.cancel import CancelToken
from pipeline.config import PipelineConfig
from pipeline.events import directive_texts
from pipeline.models import RunContext
from pipeline.scheduler import overall_status, print_summary
from pipeline.wiring import build_pipeline, github_config


def run_flows(
    ctx: RunContext,
    config: PipelineConfig,
    *,
    flows: Sequence[str],
    bindings: Optional[Sequence[str]] = None,
    extra_directives: Sequence[str] = (),
    dry_run: bool = False,
    cancel: Optional[CancelToken] = None,
) -> int:
    pipeline = build_pipeline(
        config,
        pr_number=ctx.pr_number,
        repository=ctx.repository,
        dry_run=dry_run,
        cancel=cancel,
    )

    decision = pipeline.gate(ctx)
    texts: List[str] = []
    if decision.run:
        # Comments are only worth fetching for events that will run.
        texts = directive_texts(ctx, github_config(config, ctx.repository))
    texts.extend(extra_directives)

    if dry_run:
        print(f"\n🧪 Dry run for PR #{ctx.pr_number} (gate: {decision.reason})")
        for job_name, slots in pipeline.plan(ctx, directive_texts=texts, bindings=bindings, flows=flows).items():
            print(f"\n▶ {job_name}")
            for s in slots:
                sub = " (+submodules)" if s.include_submodules else ""
                print(f"  {s.slot:<15} {s.repository}@{s.ref}{sub}")
        return 0

    results = pipeline.run(ctx, directive_texts=texts, bindings=bindings, flows=flows)
    print_summary(results)
    return 1 if overall_status(results).failed else 0
