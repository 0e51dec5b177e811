from __future__ import annotations

import argparse

from pipeline.bindings import DEFAULT_BINDINGS, SUPPORTED_BINDINGS


COMMANDS = ("gate", "test", "compare", "run")


def add_base_args(parser: argparse.ArgumentParser) -> None:
    """Register CLI flags shared by every command.

    This includes:
    - command selection
    - event input (payload file or explicit PR values)
    - binding selection
    - execution knobs
    """

    parser.add_argument(
        "command",
        choices=COMMANDS,
        help=(
            "gate = only decide whether the event runs, test = binding tests against the PR's core, "
            "compare = performance comparison, run = test then compare"
        ),
    )
    parser.add_argument(
        "--binding",
        dest="bindings",
        action="append",
        choices=sorted(SUPPORTED_BINDINGS),
        help=f"Binding to exercise (repeatable; default: {', '.join(DEFAULT_BINDINGS)})",
    )

    # Event input
    parser.add_argument(
        "--event-path",
        help="GitHub pull_request event payload (default: $GITHUB_EVENT_PATH when --pr is not given)",
    )
    parser.add_argument("--pr", type=int, help="Pull request number (manual runs without an event payload)")
    parser.add_argument("--head-sha", help="Head commit of the pull request (manual runs)")
    parser.add_argument(
        "--label",
        dest="labels",
        action="append",
        help="Label present on the pull request (repeatable; manual runs)",
    )
    parser.add_argument(
        "--directive",
        dest="directives",
        action="append",
        default=[],
        help="Extra override directive text, e.g. MMTK_CORE_TRUNK_REF=v0.8.0 (repeatable; applied last)",
    )
    parser.add_argument("--repository", help="owner/name of the core repository (default: $GITHUB_REPOSITORY)")

    # Execution knobs
    parser.add_argument(
        "--config",
        help="Path to review_ci.yaml (default: ./review_ci.yaml if present, else built-in defaults)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve revisions and print the planned checkouts without touching the host",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
