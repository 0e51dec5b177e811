"""pipeline.execution.runner

Executors for the two flows. Each external script is an opaque subprocess:
we pass it a pinned toolchain and paths, and look only at its exit status.

* :func:`build_and_test` - binding ``ci-setup.sh`` then ``ci-test.sh``.
* :func:`stage_workloads` / :func:`run_comparison` - the perf kit's
  ``<binding>-compare.sh`` over the trunk and branch checkouts.

Rule
----
Only this module (and :mod:`tools`) should touch ``subprocess``.
"""

from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from pipeline.bindings import BindingInfo
from pipeline.cancel import CancelToken
from pipeline.errors import BenchmarkError, RunCancelled
from pipeline.models import BenchmarkReport, MaterializedSource, TestResult
from tools.core_cmd import CmdResult, run_cmd


DEFAULT_TEST_TIMEOUT_SECONDS = 60 * 60

# Layout inside a perf kit checkout.
BENCHMARKS_DIR = Path("running") / "benchmarks"
RESULTS_LOG_DIR = Path("running") / "results" / "log"

RunFn = Callable[..., CmdResult]


def toolchain_env(toolchain: str, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = dict(extra or {})
    env["RUSTUP_TOOLCHAIN"] = toolchain
    return env


def _tail(text: str, lines: int = 40) -> str:
    return "\n".join(text.rstrip().splitlines()[-lines:])


# ---------------------------------------------------------------------------
# Build & test
# ---------------------------------------------------------------------------


def build_and_test(
    binding_source: MaterializedSource,
    toolchain: str,
    *,
    binding: BindingInfo,
    timeout_seconds: float = DEFAULT_TEST_TIMEOUT_SECONDS,
    cancel: Optional[CancelToken] = None,
    run_fn: RunFn = run_cmd,
) -> TestResult:
    """Run the binding's setup and test scripts against the overridden core.

    ``timeout_seconds`` is one deadline shared by both scripts. Expiry counts
    as a failure, exactly like a non-zero exit. The first failing step ends
    the sequence.
    """
    t0 = time.monotonic()
    deadline = t0 + timeout_seconds
    env = toolchain_env(toolchain, binding.env)
    outputs: List[str] = []

    for step, script in (("setup", binding.setup_script), ("test", binding.test_script)):
        if cancel is not None:
            cancel.raise_if_cancelled(f"{step} script")

        script_path = Path(binding_source.path) / script
        if not script_path.is_file():
            return TestResult(
                passed=False,
                step=step,
                exit_code=127,
                output="\n".join(outputs + [f"{script} not found in {binding_source.path}"]),
                elapsed_seconds=time.monotonic() - t0,
            )

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return TestResult(
                passed=False,
                step=step,
                exit_code=-1,
                output="\n".join(outputs),
                timed_out=True,
                elapsed_seconds=time.monotonic() - t0,
            )

        print(f"  ▶ {step}: {script} (RUSTUP_TOOLCHAIN={toolchain})")
        res = run_fn(
            [str(script_path)],
            cwd=Path(binding_source.path),
            timeout_seconds=remaining,
            env=env,
            print_stderr=False,
            cancel=cancel,
        )
        outputs.append(res.output)

        if res.cancelled:
            raise RunCancelled(f"{step} script cancelled")
        if res.timed_out or res.exit_code != 0:
            why = f"timed out after {timeout_seconds / 60:.0f} min" if res.timed_out else f"exit code {res.exit_code}"
            print(f"  ❌ {step} failed ({why})")
            return TestResult(
                passed=False,
                step=step,
                exit_code=res.exit_code,
                output="".join(outputs),
                timed_out=res.timed_out,
                elapsed_seconds=time.monotonic() - t0,
            )

    return TestResult(
        passed=True,
        step="test",
        exit_code=0,
        output="".join(outputs),
        elapsed_seconds=time.monotonic() - t0,
    )


# ---------------------------------------------------------------------------
# Benchmark & compare
# ---------------------------------------------------------------------------


def stage_workloads(perf_kit_dir: Path, workloads: Mapping[str, Sequence[str]]) -> List[Path]:
    """Copy workload archives to ``<perf-kit>/running/benchmarks/<suite>/``.

    The toolkit does not fetch its own workloads.
    """
    staged: List[Path] = []
    for suite, files in workloads.items():
        dest_dir = Path(perf_kit_dir) / BENCHMARKS_DIR / suite
        dest_dir.mkdir(parents=True, exist_ok=True)
        for f in files:
            src = Path(f).expanduser()
            if not src.is_file():
                raise BenchmarkError(f"Workload asset for {suite!r} not found: {src}")
            dest = dest_dir / src.name
            shutil.copy2(src, dest)
            staged.append(dest)
    return staged


def run_comparison(
    trunk_binding: MaterializedSource,
    trunk_core: MaterializedSource,
    branch_binding: MaterializedSource,
    branch_core: MaterializedSource,
    *,
    perf_kit_dir: Path,
    binding: BindingInfo,
    toolchain: str,
    report_path: Path,
    workloads: Optional[Mapping[str, Sequence[str]]] = None,
    cancel: Optional[CancelToken] = None,
    run_fn: RunFn = run_cmd,
) -> BenchmarkReport:
    """Run ``<perf-kit>/scripts/<binding>-compare.sh`` once; single shot.

    Raises :class:`BenchmarkError` (carrying whatever report/logs exist) if
    the toolkit exits non-zero.
    """
    perf_kit_dir = Path(perf_kit_dir)
    log_dir = perf_kit_dir / RESULTS_LOG_DIR
    partial = BenchmarkReport(report_path=Path(report_path), log_dir=log_dir, exit_code=-1)

    if workloads:
        try:
            stage_workloads(perf_kit_dir, workloads)
        except BenchmarkError as e:
            raise BenchmarkError(str(e), report=partial) from e

    script = perf_kit_dir / "scripts" / binding.compare_script
    if not script.is_file():
        raise BenchmarkError(f"Comparison script not found: {script}", report=partial)

    Path(report_path).parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        str(script),
        f"{trunk_binding.path}/",
        f"{trunk_core.path}/",
        f"{branch_binding.path}/",
        f"{branch_core.path}/",
        str(report_path),
    ]
    if cancel is not None:
        cancel.raise_if_cancelled("comparison")

    print(f"  ⏱  {binding.compare_script} (RUSTUP_TOOLCHAIN={toolchain})")
    res = run_fn(
        cmd,
        cwd=perf_kit_dir.parent,
        env=toolchain_env(toolchain, binding.env),
        print_stderr=False,
        cancel=cancel,
    )
    if res.cancelled:
        raise RunCancelled("comparison cancelled")

    report = BenchmarkReport(
        report_path=Path(report_path),
        log_dir=log_dir,
        exit_code=res.exit_code,
        output=res.output,
    )
    if res.exit_code != 0:
        raise BenchmarkError(
            f"{binding.compare_script} exited with code {res.exit_code}: {_tail(res.output, 5)}",
            report=report,
        )
    return report
