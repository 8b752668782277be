import pytest

from runnerscaler.autoscaling import (
    Autoscaler,
    AutoscalingError,
    RunnerInfo,
    ScaleTarget,
    WorkflowJob,
    WorkflowRun,
)
from runnerscaler.hra import (
    HorizontalRunnerAutoscaler,
    HorizontalRunnerAutoscalerSpec,
    MetricSpec,
)

TOTAL = "TotalNumberOfQueuedAndInProgressWorkflowRuns"
BUSY = "PercentageRunnersBusy"


class FakeClient:
    def __init__(self, runs=(), jobs=None, runners=(), page_size=None, failing_runs=()):
        self.runs = list(runs)
        self.jobs = jobs or {}
        self.runners = list(runners)
        self.page_size = page_size
        self.failing_runs = set(failing_runs)
        self.run_requests = []

    def list_repository_workflow_runs(self, owner, repo):
        self.run_requests.append((owner, repo))
        return list(self.runs)

    def list_workflow_jobs(self, owner, repo, run_id, *, page, per_page):
        if run_id in self.failing_runs:
            raise RuntimeError("boom")
        jobs = self.jobs.get(run_id, [])
        size = self.page_size or per_page
        start = max(page - 1, 0) * size
        chunk = jobs[start:start + size]
        next_page = (max(page, 1) + 1) if start + size < len(jobs) else 0
        return chunk, next_page

    def list_runners(self, enterprise, organization, repository):
        return list(self.runners)


def runs(*statuses_and_ids):
    return [WorkflowRun(id=i, status=s) for s, i in statuses_and_ids]


def job(status, *labels):
    return WorkflowJob(status=status, labels=list(labels))


def make_hra(*metrics, min_replicas=2, max_replicas=10):
    return HorizontalRunnerAutoscaler(
        spec=HorizontalRunnerAutoscalerSpec(
            min_replicas=min_replicas, max_replicas=max_replicas, metrics=list(metrics)
        )
    )


LEGACY_3 = runs(("queued", 0), ("in_progress", 0), ("in_progress", 0), ("completed", 0))
LEGACY_2 = runs(("queued", 0), ("in_progress", 0), ("completed", 0))
LEGACY_Q1 = runs(("queued", 0), ("completed", 0))
LEGACY_IP1 = runs(("in_progress", 0), ("completed", 0))
LEGACY_IP3 = runs(("in_progress", 0), ("in_progress", 0), ("in_progress", 0), ("completed", 0))
JOB_RUNS = runs(("queued", 1), ("in_progress", 2), ("in_progress", 3), ("completed", 0))

CUSTOM_JOBS = {
    1: [job("queued", "self-hosted", "custom"), job("queued", "self-hosted", "custom")],
    2: [job("in_progress", "self-hosted", "custom"), job("completed", "self-hosted", "custom")],
    3: [job("in_progress", "self-hosted", "custom"), job("queued", "self-hosted", "custom")],
}
UNLABELED_JOBS = {
    1: [job("queued"), job("queued")],
    2: [job("in_progress"), job("completed")],
    3: [job("in_progress"), job("queued")],
}
MANAGED_JOBS = {
    1: [job("queued", "managed-runner-label"), job("queued", "managed-runner-label")],
    2: [job("in_progress", "managed-runner-label"), job("completed", "managed-runner-label")],
    3: [job("in_progress", "managed-runner-label"), job("queued", "managed-runner-label")],
}

CASES = [
    pytest.param(LEGACY_3, None, [], 3, id="3-demanded"),
    pytest.param(LEGACY_3, None, ["self-hosted"], 3, id="3-demanded-self-hosted"),
    pytest.param(LEGACY_2, None, [], 2, id="2-demanded"),
    pytest.param(LEGACY_Q1, None, [], 1, id="1-queued"),
    pytest.param(LEGACY_IP1, None, [], 1, id="1-in-progress"),
    pytest.param(LEGACY_IP3, None, [], 3, id="3-in-progress"),
    pytest.param(JOB_RUNS, CUSTOM_JOBS, [], 5, id="jobs-no-label"),
    pytest.param(JOB_RUNS, UNLABELED_JOBS, [], 0, id="jobs-lack-self-hosted"),
    pytest.param(JOB_RUNS, CUSTOM_JOBS, ["self-hosted"], 5, id="jobs-self-hosted"),
    pytest.param(JOB_RUNS, CUSTOM_JOBS, ["custom2"], 0, id="jobs-custom2"),
    pytest.param(JOB_RUNS, MANAGED_JOBS, ["self-hosted"], 0, id="jobs-managed-label"),
    pytest.param(JOB_RUNS, CUSTOM_JOBS, ["self-hosted", "custom"], 5, id="jobs-default-custom"),
    pytest.param(JOB_RUNS, CUSTOM_JOBS, ["custom"], 5, id="jobs-custom"),
]


@pytest.mark.parametrize("workflow_runs,jobs,labels,want", CASES)
def test_repository_runner_demand(workflow_runs, jobs, labels, want):
    client = FakeClient(runs=workflow_runs, jobs=jobs)
    target = ScaleTarget(name="testrd", repo="test/valid", labels=labels)
    metric = MetricSpec(type=TOTAL)
    got = Autoscaler(client).suggest_replicas_by_queued_and_in_progress_workflow_runs(
        target, make_hra(metric), metric
    )
    assert got == want
    assert client.run_requests == [("test", "valid")]


@pytest.mark.parametrize("workflow_runs,jobs,labels,want", CASES)
def test_organizational_runner_demand(workflow_runs, jobs, labels, want):
    client = FakeClient(runs=workflow_runs, jobs=jobs)
    target = ScaleTarget(name="testrd", org="test", labels=labels)
    metric = MetricSpec(type=TOTAL, repository_names=["valid"])
    got = Autoscaler(client).suggest_desired_replicas(target, make_hra(metric))
    assert got == (want if want > 0 else None)
    assert client.run_requests == [("test", "valid")]


def test_organizational_runner_without_repositories_fails():
    client = FakeClient(runs=LEGACY_IP1)
    target = ScaleTarget(name="testrd", org="test")
    metric = MetricSpec(type=TOTAL)
    with pytest.raises(AutoscalingError) as info:
        Autoscaler(client).suggest_desired_replicas(target, make_hra(metric))
    assert str(info.value) == (
        "validating autoscaling metrics: spec.autoscaling.metrics[].repositoryNames is "
        "required and must have one more more entries for organizational runner deployment"
    )


def test_organizational_runner_without_metric_gives_no_suggestion():
    target = ScaleTarget(org="test")
    got = Autoscaler(FakeClient()).suggest_replicas_by_queued_and_in_progress_workflow_runs(
        target, make_hra(), None
    )
    assert got is None


def test_missing_repo_and_org_fails():
    with pytest.raises(AutoscalingError, match="organization should not be empty"):
        Autoscaler(FakeClient()).suggest_replicas_by_queued_and_in_progress_workflow_runs(
            ScaleTarget(), make_hra(), MetricSpec(type=TOTAL)
        )


def test_jobs_across_pages_are_all_counted():
    jobs = {1: [job("queued", "self-hosted")] * 5}
    client = FakeClient(runs=runs(("queued", 1)), jobs=jobs, page_size=2)
    target = ScaleTarget(repo="o/r")
    got = Autoscaler(client).suggest_replicas_by_queued_and_in_progress_workflow_runs(
        target, make_hra(), MetricSpec(type=TOTAL)
    )
    assert got == 5


def test_job_listing_failure_skips_run():
    client = FakeClient(runs=runs(("queued", 1), ("queued", 0)), failing_runs={1})
    got = Autoscaler(client).suggest_replicas_by_queued_and_in_progress_workflow_runs(
        ScaleTarget(repo="o/r"), make_hra(), MetricSpec(type=TOTAL)
    )
    assert got == 1


def test_run_without_jobs_falls_back_to_run_status():
    client = FakeClient(runs=runs(("in_progress", 7)), jobs={7: []})
    got = Autoscaler(client).suggest_replicas_by_queued_and_in_progress_workflow_runs(
        ScaleTarget(repo="o/r"), make_hra(), MetricSpec(type=TOTAL)
    )
    assert got == 1


def test_missing_min_and_max_replicas():
    hra = make_hra(MetricSpec(type=TOTAL), min_replicas=None)
    hra.metadata.namespace, hra.metadata.name = "ns", "h"
    with pytest.raises(AutoscalingError, match="ns/h is missing minReplicas"):
        Autoscaler(FakeClient()).suggest_desired_replicas(ScaleTarget(repo="o/r"), hra)
    hra = make_hra(MetricSpec(type=TOTAL), max_replicas=None)
    with pytest.raises(AutoscalingError, match="is missing maxReplicas"):
        Autoscaler(FakeClient()).suggest_desired_replicas(ScaleTarget(repo="o/r"), hra)


def test_no_metrics_gives_no_suggestion():
    assert Autoscaler(FakeClient()).suggest_desired_replicas(ScaleTarget(), make_hra()) is None


def test_too_many_metrics():
    hra = make_hra(MetricSpec(type=TOTAL), MetricSpec(type=TOTAL), MetricSpec(type=TOTAL))
    with pytest.raises(AutoscalingError, match="but got 3"):
        Autoscaler(FakeClient()).suggest_desired_replicas(ScaleTarget(repo="o/r"), hra)


def test_unsupported_metric_type():
    with pytest.raises(AutoscalingError, match='unsupported metric type "Bogus"'):
        Autoscaler(FakeClient()).suggest_desired_replicas(
            ScaleTarget(repo="o/r"), make_hra(MetricSpec(type="Bogus"))
        )


def test_busy_falls_back_to_workflow_runs():
    client = FakeClient(runs=LEGACY_3, runners=[RunnerInfo("a", busy=False)])
    target = ScaleTarget(repo="o/r", replicas=1, runner_names={"a"})
    hra = make_hra(MetricSpec(type=BUSY), MetricSpec(type=TOTAL))
    assert Autoscaler(client).suggest_desired_replicas(target, hra) == 3


def test_invalid_metric_combination():
    hra = make_hra(MetricSpec(type=TOTAL), MetricSpec(type=BUSY))
    with pytest.raises(AutoscalingError, match="The only allowed combination"):
        Autoscaler(FakeClient()).suggest_desired_replicas(ScaleTarget(repo="o/r"), hra)


def busy_target(replicas, busy, idle):
    names = [f"busy{i}" for i in range(busy)] + [f"idle{i}" for i in range(idle)]
    runners = [RunnerInfo(n, busy=n.startswith("busy")) for n in names]
    runners.append(RunnerInfo("foreign", busy=True))
    return ScaleTarget(repo="o/r", replicas=replicas, runner_names=names), FakeClient(
        runners=runners
    )


def test_busy_scale_up_by_factor():
    target, client = busy_target(4, 4, 0)
    metric = MetricSpec(type=BUSY)
    got = Autoscaler(client).suggest_replicas_by_percentage_runners_busy(
        target, make_hra(metric), metric
    )
    assert got == 6


def test_busy_scale_up_by_adjustment():
    target, client = busy_target(3, 3, 0)
    metric = MetricSpec(type=BUSY, scale_up_adjustment=2)
    got = Autoscaler(client).suggest_replicas_by_percentage_runners_busy(
        target, make_hra(metric), metric
    )
    assert got == 5


def test_busy_scale_down_by_factor_and_adjustment():
    target, client = busy_target(10, 0, 10)
    metric = MetricSpec(type=BUSY)
    scaler = Autoscaler(client)
    assert scaler.suggest_replicas_by_percentage_runners_busy(target, make_hra(), metric) == 7
    metric = MetricSpec(type=BUSY, scale_down_adjustment=4)
    assert scaler.suggest_replicas_by_percentage_runners_busy(target, make_hra(), metric) == 6


def test_busy_within_thresholds_keeps_replicas():
    target, client = busy_target(10, 5, 5)
    metric = MetricSpec(type=BUSY)
    got = Autoscaler(client).suggest_replicas_by_percentage_runners_busy(
        target, make_hra(), metric
    )
    assert got == 10


def test_busy_custom_thresholds():
    target, client = busy_target(10, 5, 5)
    metric = MetricSpec(type=BUSY, scale_up_threshold="0.5", scale_up_factor="2")
    got = Autoscaler(client).suggest_replicas_by_percentage_runners_busy(
        target, make_hra(), metric
    )
    assert got == 20


def test_busy_scale_down_to_zero_gives_no_suggestion():
    target, client = busy_target(1, 0, 1)
    hra = make_hra(MetricSpec(type=BUSY))
    assert Autoscaler(client).suggest_desired_replicas(target, hra) is None


@pytest.mark.parametrize(
    "metric,message",
    [
        (MetricSpec(type=BUSY, scale_up_threshold="abc"), "scaleUpThreshold cannot be parsed"),
        (MetricSpec(type=BUSY, scale_down_threshold="x"), "scaleDownThreshold cannot be parsed"),
        (MetricSpec(type=BUSY, scale_up_factor="x"), "scaleUpFactor cannot be parsed"),
        (MetricSpec(type=BUSY, scale_down_factor="x"), "scaleDownFactor cannot be parsed"),
        (MetricSpec(type=BUSY, scale_up_adjustment=-1), "scaleUpAdjustment cannot be lower"),
        (MetricSpec(type=BUSY, scale_down_adjustment=-1), "scaleDownAdjustment cannot be lower"),
        (
            MetricSpec(type=BUSY, scale_up_adjustment=1, scale_up_factor="2"),
            "scaleUpAdjustment and scaleUpFactor cannot be specified together",
        ),
        (
            MetricSpec(type=BUSY, scale_down_adjustment=1, scale_down_factor="0.5"),
            "scaleDownAdjustment and scaleDownFactor cannot be specified together",
        ),
    ],
)
def test_busy_metric_validation(metric, message):
    target, client = busy_target(1, 1, 0)
    with pytest.raises(AutoscalingError, match=message):
        Autoscaler(client).suggest_replicas_by_percentage_runners_busy(
            target, make_hra(metric), metric
        )