import unittest

from pipeline.cancel import CancelToken
from pipeline.config import PipelineConfig
from pipeline.errors import ConfigurationError
from pipeline.models import Job, RunContext, RunResult, RunStatus, worst_status
from pipeline.orchestrator import Collaborators
from pipeline.pipeline import ReviewPipeline
from pipeline.reporter import ConsoleCommentSink
from pipeline.scheduler import overall_status, plan_jobs, run_jobs

CTX = RunContext(pr_number=3, head_sha="f" * 40, labels=frozenset({"PR-benchmarking"}), event="labeled")


class TestPlanJobs(unittest.TestCase):
    def test_default_matrix(self) -> None:
        jobs = plan_jobs(PipelineConfig())
        self.assertEqual(
            ["jikesrvm-test", "jikesrvm-compare", "openjdk-test", "openjdk-compare"],
            [j.name for j in jobs],
        )

    def test_selection_and_validation(self) -> None:
        self.assertEqual([Job("openjdk", "compare")], plan_jobs(PipelineConfig(), ["compare"], ["openjdk"]))
        with self.assertRaises(ConfigurationError):
            plan_jobs(PipelineConfig(), ["bench"])
        with self.assertRaises(ConfigurationError):
            plan_jobs(PipelineConfig(), None, ["graalvm"])


class TestRunJobs(unittest.TestCase):
    def test_gate_evaluated_once_and_shared(self) -> None:
        seen = []

        def run_job(job, decision):
            seen.append(decision)
            return RunResult(job=job, status=RunStatus.SUCCESS)

        results = run_jobs(CTX, plan_jobs(PipelineConfig()), run_job)
        self.assertEqual(4, len(results))
        self.assertTrue(all(d is seen[0] for d in seen))
        self.assertTrue(seen[0].run)

    def test_overall_status_is_worst(self) -> None:
        statuses = [RunStatus.SUCCESS, RunStatus.BENCHMARK_ERROR, RunStatus.BUILD_TEST_FAILURE]
        results = [RunResult(job=Job("openjdk", "test"), status=s) for s in statuses]
        self.assertEqual(RunStatus.BENCHMARK_ERROR, overall_status(results))
        self.assertEqual(RunStatus.SKIPPED, worst_status([]))
        self.assertEqual(RunStatus.CANCELLED, worst_status([RunStatus.CONFIGURATION_ERROR, RunStatus.CANCELLED]))

    def test_cancelled_jobs_are_not_started(self) -> None:
        token = CancelToken()
        calls = []

        def run_job(job, decision):
            calls.append(job.name)
            token.cancel("SIGTERM")
            return RunResult(job=job, status=RunStatus.SUCCESS)

        results = run_jobs(CTX, plan_jobs(PipelineConfig()), run_job, cancel=token)
        self.assertEqual(["jikesrvm-test"], calls)
        self.assertEqual([RunStatus.CANCELLED] * 3, [r.status for r in results[1:]])


class TestReviewPipeline(unittest.TestCase):
    def test_run_passes_directives_and_gate(self) -> None:
        captured = []

        def fake_run(req, deps):
            captured.append(req)
            return RunResult(job=req.job, status=RunStatus.SUCCESS)

        pipeline = ReviewPipeline(
            PipelineConfig(),
            Collaborators(comments=ConsoleCommentSink()),
            run_id="42",
            run_fn=fake_run,
        )
        results = pipeline.run(CTX, directive_texts=["MMTK_CORE_TRUNK_REF=v1"], bindings=["openjdk"])
        self.assertEqual(["openjdk-test", "openjdk-compare"], [r.job.name for r in results])
        self.assertTrue(all(r.gate is not None and r.gate.run for r in captured))
        self.assertEqual(("MMTK_CORE_TRUNK_REF=v1",), captured[0].directive_texts)
        self.assertEqual("42", captured[0].run_id)

    def test_plan(self) -> None:
        pipeline = ReviewPipeline(PipelineConfig(), Collaborators(comments=ConsoleCommentSink()))
        plan = pipeline.plan(CTX, directive_texts=["JIKESRVM_BINDING_REF=wip"], flows=["test"])
        self.assertEqual({"jikesrvm-test", "openjdk-test"}, set(plan))
        self.assertEqual("wip", plan["jikesrvm-test"][0].ref)
        self.assertEqual("master", plan["openjdk-test"][0].ref)


if __name__ == "__main__":
    unittest.main()
