"""pipeline.gate

Decide whether a pull request event should run the pipeline at all.

Pure functions over an already-known :class:`~pipeline.models.RunContext`.
The gate is evaluated before any checkout so unapproved pull requests cost
nothing.
"""

from __future__ import annotations

from typing import FrozenSet

from pipeline.models import GateDecision, RunContext


APPROVAL_LABELS: FrozenSet[str] = frozenset({"PR-approved", "PR-benchmarking"})
TRIGGER_EVENTS: FrozenSet[str] = frozenset({"opened", "synchronize", "reopened", "labeled"})


def should_run(ctx: RunContext) -> bool:
    """True iff the pull request carries at least one approval label.

    Missing label data fails closed.
    """
    if ctx.labels is None:
        return False
    return bool(APPROVAL_LABELS & set(ctx.labels))


def accepts_event(ctx: RunContext, target_branch: str = "master") -> bool:
    return ctx.event in TRIGGER_EVENTS and ctx.base_ref == target_branch


def evaluate_gate(ctx: RunContext, target_branch: str = "master") -> GateDecision:
    if not accepts_event(ctx, target_branch):
        if ctx.event not in TRIGGER_EVENTS:
            return GateDecision(False, f"event {ctx.event!r} does not trigger review runs")
        return GateDecision(False, f"pull request targets {ctx.base_ref!r}, not {target_branch!r}")
    if ctx.labels is None:
        return GateDecision(False, "label data unavailable")
    if not should_run(ctx):
        wanted = " or ".join(sorted(APPROVAL_LABELS))
        return GateDecision(False, f"pull request is not labelled {wanted}")
    matched = ", ".join(sorted(APPROVAL_LABELS & set(ctx.labels)))
    return GateDecision(True, f"approved via {matched}")
