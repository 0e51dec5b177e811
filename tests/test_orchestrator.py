import contextlib
import json
import tempfile
import unittest
from pathlib import Path
from typing import Dict, List

from pipeline.cancel import CancelToken
from pipeline.config import PerfKitConfig, PipelineConfig
from pipeline.errors import AcquisitionError, BenchmarkError, HostBusyError, PublishError
from pipeline.events import directive_texts
from pipeline.execution.runner import RESULTS_LOG_DIR
from pipeline.host_lock import host_lock
from pipeline.models import (
    FLOW_COMPARE,
    FLOW_TEST,
    BenchmarkReport,
    Job,
    MaterializedSource,
    RunContext,
    RunStatus,
    TestResult,
)
from pipeline.orchestrator import Collaborators, RunRequest, plan_run, run_binding_test, run_job, run_perf_compare
from pipeline.reporter import ConsoleCommentSink
from tools.artifacts import LocalArtifactStore

HEAD = "e" * 40
MANIFEST = '[dependencies]\nmmtk = { git = "https://github.com/mmtk/mmtk-core.git", rev = "abc" }\n'


def _ctx(labels=("PR-approved",), body: str = "") -> RunContext:
    return RunContext(
        pr_number=11,
        head_sha=HEAD,
        labels=frozenset(labels) if labels is not None else None,
        event="synchronize",
        body=body,
    )


class FailingSink:
    def publish(self, text: str) -> None:
        raise PublishError("GitHub API returned 502")


class Harness:
    """Fake stage implementations that touch only a temporary directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.kit = root / "ci-perf-kit"
        (self.kit / RESULTS_LOG_DIR).mkdir(parents=True)
        self.config = PipelineConfig(
            work_root=str(root / "work"),
            artifacts_root=str(root / "artifacts"),
            lock_path=str(root / "work" / ".lock"),
            perf_kit=PerfKitConfig(path=str(self.kit)),
        )
        self.requested: List = []
        self.compare_calls: List = []
        self.events: List = []
        self.manifest_text = MANIFEST
        self.manifest_encoding = "utf-8"
        self.acquire_error = None
        self.compare_error = None
        self.test_result = TestResult(passed=True, step="test", exit_code=0, output="ok")
        self.comments = ConsoleCommentSink()

    def acquire(self, requests, workdir, *, token=None, max_workers=4, cancel=None) -> Dict[str, MaterializedSource]:
        self.requested = list(requests)
        out = {}
        for r in requests:
            if cancel is not None:
                cancel.raise_if_cancelled(r.slot)
            dest = Path(workdir) / r.slot
            dest.mkdir(parents=True)
            if r.slot.endswith("binding"):
                (dest / "mmtk").mkdir()
                (dest / "mmtk" / "Cargo.toml").write_text(self.manifest_text, encoding=self.manifest_encoding)
            out[r.slot] = MaterializedSource(slot=r.slot, path=dest, repository=r.repository, ref=r.ref, commit="1" * 40)
        if self.acquire_error is not None:
            raise self.acquire_error
        return out

    def build_and_test(self, source, toolchain, *, binding, timeout_seconds, cancel=None) -> TestResult:
        self.events.append(("build", toolchain, timeout_seconds))
        return self.test_result

    def compare(self, tb, tc, bb, bc, *, perf_kit_dir, binding, toolchain, report_path, workloads=None, cancel=None):
        manifest = (tb.path / "mmtk" / "Cargo.toml").read_text(encoding="utf-8")
        self.compare_calls.append({"trunk_manifest": manifest, "trunk_core": str(tc.path), "perf_kit": perf_kit_dir})
        (perf_kit_dir / RESULTS_LOG_DIR / "bench.log").write_text("raw log", encoding="utf-8")
        if self.compare_error is not None:
            raise self.compare_error
        report_path.write_text("## Performance\n| bench | delta |\n", encoding="utf-8")
        return BenchmarkReport(report_path=report_path, log_dir=perf_kit_dir / RESULTS_LOG_DIR)

    @contextlib.contextmanager
    def lock(self, path, *, owner="", timeout_seconds=None, cancel=None):
        self.events.append("locked")
        yield path
        self.events.append(("released", any((self.root / "work").glob("*-compare"))))

    def deps(self, **overrides) -> Collaborators:
        kwargs = dict(
            comments=self.comments,
            artifacts=LocalArtifactStore(self.root / "artifacts" / "run-1"),
            cancel=CancelToken(),
            acquire=self.acquire,
            build_and_test=self.build_and_test,
            compare=self.compare,
            lock=self.lock,
            record_dir=self.root / "artifacts" / "run-1",
        )
        kwargs.update(overrides)
        return Collaborators(**kwargs)

    def request(self, flow: str, ctx: RunContext = None, texts=None) -> RunRequest:
        ctx = ctx or _ctx()
        return RunRequest(
            context=ctx,
            job=Job(binding="openjdk", flow=flow),
            config=self.config,
            directive_texts=tuple(directive_texts(ctx) if texts is None else texts),
            run_id="run-1",
        )

    def leftovers(self) -> List[Path]:
        work = self.root / "work"
        left = [p for p in work.iterdir() if p.name != ".lock"] if work.exists() else []
        return left + list((self.kit / RESULTS_LOG_DIR).iterdir())


class TestPerfCompare(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.h = Harness(Path(self._td.name))

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_default_revisions_end_to_end(self) -> None:
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps())

        self.assertEqual(RunStatus.SUCCESS, result.status)
        self.assertEqual(0, result.exit_code)
        self.assertEqual(
            [("trunk-binding", "master"), ("trunk-core", "master"), ("branch-binding", "master"), ("branch-core", HEAD)],
            [(r.slot, r.ref) for r in self.h.requested],
        )
        # Both pairs were overridden before the comparison ran.
        call = self.h.compare_calls[0]
        self.assertIn(f'path = "{Path(call["trunk_core"]).resolve()}"', call["trunk_manifest"])
        self.assertNotIn("git =", call["trunk_manifest"])
        self.assertEqual(self.h.kit, call["perf_kit"])

        self.assertEqual(["## Performance\n| bench | delta |\n"], self.h.comments.published)
        artifacts = self.h.root / "artifacts" / "run-1"
        self.assertTrue((artifacts / "openjdk-compare-report.md").is_file())
        self.assertTrue((artifacts / "openjdk-log" / "bench.log").is_file())
        record = json.loads((artifacts / "openjdk-compare" / "run.json").read_text(encoding="utf-8"))
        self.assertEqual("success", record["status"])
        self.assertEqual(HEAD, record["revisions"]["branch_core_ref"])
        self.assertIn("toolchain: nightly-2020-07-08", (artifacts / "openjdk-compare" / "config.yaml").read_text(encoding="utf-8"))

        self.assertEqual([], self.h.leftovers())
        # The host stays owned until Cleanup has finished.
        self.assertEqual(["locked", ("released", False)], self.h.events)

    def test_directive_overrides_branch_binding(self) -> None:
        ctx = _ctx(body="Needs OPENJDK_BINDING_BRANCH_REF=fix-x to build.")
        result = run_perf_compare(self.h.request(FLOW_COMPARE, ctx), self.h.deps())
        self.assertEqual(RunStatus.SUCCESS, result.status)
        refs = {r.slot: r.ref for r in self.h.requested}
        self.assertEqual(
            {"trunk-binding": "master", "trunk-core": "master", "branch-binding": "fix-x", "branch-core": HEAD},
            refs,
        )
        self.assertEqual("fix-x", result.revisions.branch_binding_ref)

    def test_acquisition_failure(self) -> None:
        self.h.acquire_error = AcquisitionError("unknown ref", slot="trunk-core")
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps())
        self.assertEqual(RunStatus.ACQUISITION_ERROR, result.status)
        self.assertEqual(1, result.exit_code)
        self.assertEqual([], self.h.compare_calls)
        self.assertEqual([], self.h.comments.published)
        self.assertEqual([], self.h.leftovers())

    def test_override_failure(self) -> None:
        self.h.manifest_text = '[dependencies]\nlibc = "0.2"\n'
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps())
        self.assertEqual(RunStatus.OVERRIDE_ERROR, result.status)
        self.assertEqual([], self.h.compare_calls)
        self.assertEqual([], self.h.leftovers())

    def test_benchmark_failure_still_reports(self) -> None:
        report = BenchmarkReport(
            report_path=self.h.config.work_path / "openjdk-compare-report.md",
            log_dir=self.h.kit / RESULTS_LOG_DIR,
            exit_code=1,
            output="branch build failed: linker error",
        )
        self.h.compare_error = BenchmarkError("openjdk-compare.sh exited with code 1", report=report)
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps())
        self.assertEqual(RunStatus.BENCHMARK_ERROR, result.status)
        self.assertEqual(1, len(self.h.comments.published))
        self.assertIn("linker error", self.h.comments.published[0])
        self.assertTrue((self.h.root / "artifacts" / "run-1" / "openjdk-log" / "bench.log").is_file())
        self.assertEqual([], self.h.leftovers())

    def test_leftovers_of_a_killed_run_are_not_reported(self) -> None:
        req = self.h.request(FLOW_COMPARE)
        (req.workdir / "trunk-core").mkdir(parents=True)
        req.report_path.write_text("STALE REPORT FROM PR #3", encoding="utf-8")
        log_dir = self.h.kit / RESULTS_LOG_DIR
        (log_dir / "stale.log").write_text("old numbers", encoding="utf-8")
        self.h.compare_error = BenchmarkError(
            "openjdk-compare.sh exited with code 1",
            report=BenchmarkReport(report_path=req.report_path, log_dir=log_dir, exit_code=1, output="toolkit crashed"),
        )

        result = run_perf_compare(req, self.h.deps())

        self.assertEqual(RunStatus.BENCHMARK_ERROR, result.status)
        self.assertEqual(1, len(self.h.comments.published))
        self.assertNotIn("STALE", self.h.comments.published[0])
        self.assertIn("toolkit crashed", self.h.comments.published[0])
        uploaded = self.h.root / "artifacts" / "run-1" / "openjdk-log"
        self.assertEqual(["bench.log"], sorted(p.name for p in uploaded.iterdir()))
        self.assertEqual([], self.h.leftovers())

    def test_report_path_is_scoped_to_the_run(self) -> None:
        req = self.h.request(FLOW_COMPARE)
        self.assertEqual(req.workdir, req.report_path.parent)

    def test_undecodable_manifest_is_an_override_error(self) -> None:
        self.h.manifest_text = '[dependencies]\n# Jürgen\nmmtk = "0.1"\n'
        self.h.manifest_encoding = "latin-1"
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps())
        self.assertEqual(RunStatus.OVERRIDE_ERROR, result.status)
        self.assertEqual([], self.h.compare_calls)
        record = json.loads((self.h.root / "artifacts" / "run-1" / "openjdk-compare" / "run.json").read_text(encoding="utf-8"))
        self.assertEqual("override_error", record["status"])
        self.assertEqual([], self.h.leftovers())

    def test_publish_failure_is_a_warning(self) -> None:
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps(comments=FailingSink()))
        self.assertEqual(RunStatus.SUCCESS, result.status)
        self.assertTrue(any("502" in w for w in result.warnings))
        self.assertEqual([], self.h.leftovers())

    def test_malformed_directive_aborts_before_any_work(self) -> None:
        ctx = _ctx(body="MMTK_CORE_BRANCH_REF = abc")
        result = run_perf_compare(self.h.request(FLOW_COMPARE, ctx), self.h.deps())
        self.assertEqual(RunStatus.CONFIGURATION_ERROR, result.status)
        self.assertEqual([], self.h.requested)
        self.assertEqual([], self.h.events)
        self.assertFalse((self.h.root / "work").exists())

    def test_unapproved_pull_request_is_skipped(self) -> None:
        result = run_perf_compare(self.h.request(FLOW_COMPARE, _ctx(labels=None)), self.h.deps())
        self.assertEqual(RunStatus.SKIPPED, result.status)
        self.assertEqual(0, result.exit_code)
        self.assertEqual([], self.h.requested)

    def test_host_busy(self) -> None:
        @contextlib.contextmanager
        def busy(path, **kwargs):
            raise HostBusyError("still busy")
            yield path

        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps(lock=busy))
        self.assertEqual(RunStatus.ACQUISITION_ERROR, result.status)
        self.assertEqual([], self.h.requested)

    def test_cancelled_run_cleans_up(self) -> None:
        token = CancelToken()
        token.cancel("superseded by a newer push")
        result = run_perf_compare(self.h.request(FLOW_COMPARE), self.h.deps(cancel=token))
        self.assertEqual(RunStatus.CANCELLED, result.status)
        self.assertEqual([], self.h.compare_calls)
        self.assertEqual([], self.h.leftovers())

    def test_real_host_lock_is_released(self) -> None:
        deps = self.h.deps(lock=host_lock)
        first = run_perf_compare(self.h.request(FLOW_COMPARE), deps)
        second = run_perf_compare(self.h.request(FLOW_COMPARE), deps)
        self.assertEqual(RunStatus.SUCCESS, first.status)
        self.assertEqual(RunStatus.SUCCESS, second.status)


class TestBindingTest(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.h = Harness(Path(self._td.name))

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_passes_without_comment(self) -> None:
        result = run_binding_test(self.h.request(FLOW_TEST), self.h.deps())
        self.assertEqual(RunStatus.SUCCESS, result.status)
        self.assertEqual([("binding", "master"), ("core", HEAD)], [(r.slot, r.ref) for r in self.h.requested])
        self.assertEqual([("build", "nightly-2020-07-08", 3600)], self.h.events)
        self.assertEqual([], self.h.comments.published)
        self.assertEqual([], self.h.leftovers())

    def test_failure_is_reported(self) -> None:
        self.h.test_result = TestResult(passed=False, step="test", exit_code=101, output="test gc::mark ... FAILED")
        result = run_job(self.h.request(FLOW_TEST), self.h.deps())
        self.assertEqual(RunStatus.BUILD_TEST_FAILURE, result.status)
        self.assertEqual(1, result.exit_code)
        self.assertIn("gc::mark", self.h.comments.published[0])
        self.assertEqual([], self.h.leftovers())

    def test_core_directive_with_failing_tests(self) -> None:
        sha1 = "5" * 40
        self.h.test_result = TestResult(passed=False, step="test", exit_code=1, output="assertion failed")
        req = self.h.request(FLOW_TEST, _ctx(labels=("PR-approved",), body=f"BRANCH_CORE_REF={sha1}"))

        result = run_binding_test(req, self.h.deps())

        self.assertEqual([("binding", "master"), ("core", sha1)], [(r.slot, r.ref) for r in self.h.requested])
        self.assertEqual(1, len(self.h.events))
        self.assertEqual(RunStatus.BUILD_TEST_FAILURE, result.status)
        self.assertEqual(sha1, result.revisions.branch_core_ref)
        self.assertFalse(req.workdir.exists())
        self.assertEqual([], self.h.leftovers())

    def test_acquisition_failure_cleans_up(self) -> None:
        self.h.acquire_error = AcquisitionError("unknown ref", slot="core")
        result = run_binding_test(self.h.request(FLOW_TEST), self.h.deps())
        self.assertEqual(RunStatus.ACQUISITION_ERROR, result.status)
        self.assertEqual([], self.h.events)
        self.assertEqual([], self.h.comments.published)
        self.assertEqual([], self.h.leftovers())

    def test_override_failure_cleans_up(self) -> None:
        self.h.manifest_text = '[dependencies]\nlibc = "0.2"\n'
        result = run_binding_test(self.h.request(FLOW_TEST), self.h.deps())
        self.assertEqual(RunStatus.OVERRIDE_ERROR, result.status)
        self.assertEqual([], self.h.events)
        self.assertEqual([], self.h.leftovers())

    def test_stale_workdir_of_an_earlier_attempt_is_replaced(self) -> None:
        req = self.h.request(FLOW_TEST)
        (req.workdir / "binding").mkdir(parents=True)
        result = run_binding_test(req, self.h.deps())
        self.assertEqual(RunStatus.SUCCESS, result.status)
        self.assertEqual([], self.h.leftovers())

    def test_single_ref_directive(self) -> None:
        ctx = _ctx(body="OPENJDK_BINDING_REF=wip")
        run_binding_test(self.h.request(FLOW_TEST, ctx), self.h.deps())
        self.assertEqual("wip", self.h.requested[0].ref)


class TestPlanRun(unittest.TestCase):
    def test_plan_includes_perf_kit_checkout_when_not_preinstalled(self) -> None:
        req = RunRequest(context=_ctx(), job=Job("jikesrvm", FLOW_COMPARE), config=PipelineConfig(), run_id="r")
        slots = plan_run(req)
        self.assertEqual(
            ["trunk-binding", "trunk-core", "branch-binding", "branch-core", "perf-kit"],
            [s.slot for s in slots],
        )
        self.assertEqual("mmtk/mmtk-jikesrvm", slots[0].repository)


if __name__ == "__main__":
    unittest.main()
