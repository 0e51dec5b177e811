"""pipeline.errors

Error taxonomy for a review run.

Each stage raises its own error kind and the orchestrator maps it 1:1 onto a
:class:`~pipeline.models.RunStatus`. Nothing is retried: a retry is a new run.
"""

from __future__ import annotations

from typing import Optional

from pipeline.models import BenchmarkReport, RunStatus, TestResult


class ReviewCIError(Exception):
    """Base class for failures that end a run with a specific status."""

    status: RunStatus = RunStatus.CONFIGURATION_ERROR


class ConfigurationError(ReviewCIError):
    """Bad configuration or a malformed override directive."""

    status = RunStatus.CONFIGURATION_ERROR


class AcquisitionError(ReviewCIError):
    """A checkout failed (unknown ref, network or authentication failure)."""

    status = RunStatus.ACQUISITION_ERROR

    def __init__(self, message: str, *, slot: Optional[str] = None) -> None:
        super().__init__(message)
        self.slot = slot


class HostBusyError(AcquisitionError):
    """Exclusive ownership of the benchmark host could not be obtained in time."""


class OverrideError(ReviewCIError):
    """The binding manifest does not have the expected dependency shape."""

    status = RunStatus.OVERRIDE_ERROR


class BuildTestFailure(ReviewCIError):
    status = RunStatus.BUILD_TEST_FAILURE

    def __init__(self, message: str, *, result: Optional[TestResult] = None) -> None:
        super().__init__(message)
        self.result = result


class BenchmarkError(ReviewCIError):
    status = RunStatus.BENCHMARK_ERROR

    def __init__(self, message: str, *, report: Optional[BenchmarkReport] = None) -> None:
        super().__init__(message)
        self.report = report


class RunCancelled(ReviewCIError):
    """The run was superseded or interrupted."""

    status = RunStatus.CANCELLED


class PublishError(Exception):
    """A comment or artifact sink was unavailable.

    Deliberately not a :class:`ReviewCIError`: publishing never decides the
    outcome of a run.
    """
