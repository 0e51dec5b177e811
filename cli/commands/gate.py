from __future__ import annotations

import os
from pathlib import Path

from pipeline.config import PipelineConfig
from pipeline.gate import evaluate_gate
from pipeline.models import RunContext


def write_github_output(name: str, value: str) -> None:
    """Append ``name=value`` to ``$GITHUB_OUTPUT`` when running under Actions."""
    out = os.getenv("GITHUB_OUTPUT")
    if not out:
        return
    with Path(out).open("a", encoding="utf-8") as fh:
        fh.write(f"{name}={value}\n")


def run_gate(ctx: RunContext, config: PipelineConfig) -> int:
    """Print the gate decision. Exit code is 0 either way; skipping is not a failure."""
    decision = evaluate_gate(ctx, config.target_branch)
    print(f"should_run={'true' if decision.run else 'false'}")
    print(f"reason={decision.reason}")
    write_github_output("should_run", "true" if decision.run else "false")
    return 0
