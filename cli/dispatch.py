from __future__ import annotations

import argparse
from typing import Optional

from cli.commands.gate import run_gate
from cli.commands.run import run_flows
from cli.common import build_context
from pipeline.cancel import CancelToken
from pipeline.config import load_config
from pipeline.models import FLOW_COMPARE, FLOW_TEST


COMMAND_FLOWS = {
    "test": (FLOW_TEST,),
    "compare": (FLOW_COMPARE,),
    "run": (FLOW_TEST, FLOW_COMPARE),
}


def dispatch(args: argparse.Namespace, *, cancel: Optional[CancelToken] = None) -> int:
    """Route a parsed command line to its command module.

    Raises :class:`~pipeline.errors.ConfigurationError` for bad input; the
    entrypoint turns that into exit code 2.
    """
    config = load_config(args.config)
    ctx = build_context(args, target_branch=config.target_branch)

    if args.command == "gate":
        return run_gate(ctx, config)

    return run_flows(
        ctx,
        config,
        flows=COMMAND_FLOWS[args.command],
        bindings=args.bindings,
        extra_directives=args.directives or (),
        dry_run=bool(args.dry_run),
        cancel=cancel,
    )
