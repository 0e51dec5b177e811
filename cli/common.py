from __future__ import annotations

"""cli.common

Small shared helpers for CLI command modules.

Every command needs the same two inputs: the pull request context (from an
event payload or explicit flags) and the config. Keeping that here avoids
subtle drift between commands.
"""

import argparse
import os
from typing import Optional

from pipeline.errors import ConfigurationError
from pipeline.events import context_from_args, load_event
from pipeline.models import RunContext


def build_context(args: argparse.Namespace, *, target_branch: str = "master") -> RunContext:
    """Explicit ``--pr`` wins; otherwise read the event payload."""
    if args.pr is not None:
        if not args.head_sha:
            raise ConfigurationError("--head-sha is required together with --pr")
        return context_from_args(
            pr_number=args.pr,
            head_sha=args.head_sha,
            labels=args.labels,
            base_ref=target_branch,
            repository=args.repository,
        )

    event_path: Optional[str] = args.event_path or os.getenv("GITHUB_EVENT_PATH")
    if not event_path:
        raise ConfigurationError("No event: pass --event-path, set GITHUB_EVENT_PATH, or use --pr/--head-sha")
    ctx = load_event(event_path)
    if args.labels:
        # Manual re-runs may assert labels the payload predates.
        ctx = context_from_args(
            pr_number=ctx.pr_number,
            head_sha=ctx.head_sha,
            labels=set(ctx.labels or ()) | set(args.labels),
            event=ctx.event,
            base_ref=ctx.base_ref,
            repository=ctx.repository,
            body=ctx.body,
        )
    return ctx
