#!/usr/bin/env python3
"""
CLI for post-review CI runs of the memory-management core.

Commands:
  gate     - decide whether a pull request event should run at all
  test     - build and test each binding against the PR's core
  compare  - performance comparison trunk vs branch, report posted to the PR
  run      - test, then compare

Usage:
  review-ci gate --event-path "$GITHUB_EVENT_PATH"
  review-ci compare --binding jikesrvm
  review-ci test --pr 123 --head-sha 0123abc --label PR-approved --dry-run
  review-ci run --pr 123 --head-sha 0123abc --label PR-approved \\
      --directive OPENJDK_BINDING_BRANCH_REF=fix-barrier
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import List, Optional

from cli.args.base import add_base_args
from cli.dispatch import dispatch
from pipeline.cancel import CancelToken
from pipeline.errors import ConfigurationError
from pipeline.wiring import load_env

logger = logging.getLogger("review_ci")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="review-ci",
        description="Correctness and performance checks for approved core pull requests.",
    )
    add_base_args(parser)
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def install_signal_handlers(cancel: CancelToken) -> None:
    """SIGTERM/SIGINT cancel the run; stages stop and Cleanup still runs."""

    def _handler(signum, _frame) -> None:
        name = signal.Signals(signum).name
        print(f"\n🛑 Received {name}; cancelling run ...", file=sys.stderr)
        cancel.cancel(f"received {name}")

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[List[str]] = None) -> int:
    # Always load .env from repo root so terminal runs behave like CI runs
    load_env()

    args = parse_args(argv)
    configure_logging(bool(args.verbose))

    cancel = CancelToken()
    install_signal_handlers(cancel)

    try:
        return dispatch(args, cancel=cancel)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
