"""pipeline.models

Lightweight data structures used across the review pipeline.

Why this exists
---------------
A review run passes a handful of loosely-related values between stages: the
pull request it was triggered for, the four revisions it compares, the
checkouts it produced, and what each executor returned. These dataclasses
give those values a small, explicit vocabulary:

- what triggered the run (RunContext)
- which revisions are compared (RevisionSet)
- what was checked out where (SlotRequest / MaterializedSource)
- what the executors produced (TestResult / BenchmarkReport)
- how the run ended (RunStatus / RunResult)

They are intentionally free of side effects so every layer can import them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Iterable, Optional, Tuple


# Slot names. The compare flow uses the four trunk/branch slots, the test flow
# uses binding/core. The perf kit is an auxiliary checkout of the toolkit.
SLOT_TRUNK_BINDING = "trunk-binding"
SLOT_TRUNK_CORE = "trunk-core"
SLOT_BRANCH_BINDING = "branch-binding"
SLOT_BRANCH_CORE = "branch-core"
SLOT_BINDING = "binding"
SLOT_CORE = "core"
SLOT_PERF_KIT = "perf-kit"

FLOW_TEST = "test"
FLOW_COMPARE = "compare"
FLOWS: Tuple[str, ...] = (FLOW_TEST, FLOW_COMPARE)


@dataclass(frozen=True)
class RunContext:
    """The pull request event a run was triggered for.

    ``labels`` is ``None`` when label data was not available (as opposed to an
    empty label set); the gate treats both as "do not run".
    """

    pr_number: int
    head_sha: str
    labels: Optional[FrozenSet[str]]
    event: str
    base_ref: str = "master"
    repository: Optional[str] = None
    body: str = ""


@dataclass(frozen=True)
class RevisionSet:
    """The four refs a comparison needs. Resolved once per run."""

    trunk_binding_ref: str
    trunk_core_ref: str
    branch_binding_ref: str
    branch_core_ref: str

    def __post_init__(self) -> None:
        from pipeline.errors import ConfigurationError

        empty = [name for name in REVISION_FIELDS if not str(getattr(self, name) or "").strip()]
        if empty:
            raise ConfigurationError(f"Revision(s) could not be resolved: {', '.join(empty)}")

    def as_dict(self) -> dict:
        return {
            "trunk_binding_ref": self.trunk_binding_ref,
            "trunk_core_ref": self.trunk_core_ref,
            "branch_binding_ref": self.branch_binding_ref,
            "branch_core_ref": self.branch_core_ref,
        }


REVISION_FIELDS: Tuple[str, ...] = (
    "trunk_binding_ref",
    "trunk_core_ref",
    "branch_binding_ref",
    "branch_core_ref",
)


@dataclass(frozen=True)
class GateDecision:
    run: bool
    reason: str


@dataclass(frozen=True)
class SlotRequest:
    """One planned checkout: which repository, at which ref, into which slot."""

    slot: str
    repository: str
    ref: str
    include_submodules: bool = False


@dataclass(frozen=True)
class MaterializedSource:
    """A checkout owned by exactly one run."""

    slot: str
    path: Path
    repository: Optional[str] = None
    ref: Optional[str] = None
    commit: Optional[str] = None


@dataclass(frozen=True)
class OverridePatch:
    """Record of one in-place dependency substitution in a binding manifest."""

    manifest: Path
    dependency: str
    original_line: str
    patched_line: str

    @property
    def changed(self) -> bool:
        return self.original_line != self.patched_line


@dataclass(frozen=True)
class TestResult:
    """Outcome of the binding's setup + test scripts."""

    __test__ = False  # not a pytest test class

    passed: bool
    step: str
    exit_code: int
    output: str = ""
    timed_out: bool = False
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class BenchmarkReport:
    """The comparison toolkit's output. Contents are opaque to the pipeline."""

    report_path: Path
    log_dir: Path
    exit_code: int = 0
    output: str = ""

    @property
    def has_report(self) -> bool:
        return self.report_path.is_file()


@dataclass(frozen=True)
class Job:
    """One (binding, flow) pair scheduled for a pull request."""

    binding: str
    flow: str

    @property
    def name(self) -> str:
        return f"{self.binding}-{self.flow}"


class RunStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCESS = "success"
    BUILD_TEST_FAILURE = "build_test_failure"
    BENCHMARK_ERROR = "benchmark_error"
    OVERRIDE_ERROR = "override_error"
    ACQUISITION_ERROR = "acquisition_error"
    CONFIGURATION_ERROR = "configuration_error"
    CANCELLED = "cancelled"

    @property
    def severity(self) -> int:
        return _SEVERITY.index(self)

    @property
    def failed(self) -> bool:
        return self not in (RunStatus.SKIPPED, RunStatus.SUCCESS)


# Ascending severity; worst_status() picks the last one present.
_SEVERITY = list(RunStatus)


def worst_status(statuses: Iterable[RunStatus]) -> RunStatus:
    worst = RunStatus.SKIPPED
    for s in statuses:
        if s.severity > worst.severity:
            worst = s
    return worst


@dataclass(frozen=True)
class RunResult:
    job: Job
    status: RunStatus
    error: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    revisions: Optional[RevisionSet] = None
    test_result: Optional[TestResult] = None
    report: Optional[BenchmarkReport] = None
    elapsed_seconds: float = 0.0
    extra: dict = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 1 if self.status.failed else 0
