"""Suggests a desired number of runners from workflow-run demand or runner busyness."""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from runnerscaler.hra import AutoscalingMetricType, HorizontalRunnerAutoscaler, MetricSpec

DEFAULT_SCALE_UP_THRESHOLD = 0.8
DEFAULT_SCALE_DOWN_THRESHOLD = 0.3
DEFAULT_SCALE_UP_FACTOR = 1.3
DEFAULT_SCALE_DOWN_FACTOR = 0.7

JOBS_PER_PAGE = 50

_TOTAL = AutoscalingMetricType.TOTAL_NUMBER_OF_QUEUED_AND_IN_PROGRESS_WORKFLOW_RUNS
_BUSY = AutoscalingMetricType.PERCENTAGE_RUNNERS_BUSY

_METRICS = "validating autoscaling metrics: spec.autoscaling.metrics[]"


class AutoscalingError(ValueError):
    """Raised when an autoscaler is misconfigured or a suggestion cannot be made."""


@dataclass
class WorkflowRun:
    """A workflow run as reported by the Actions API."""

    id: int = 0
    status: str = ""


@dataclass
class WorkflowJob:
    """A job of a workflow run as reported by the Actions API."""

    status: str = ""
    labels: list[str] = field(default_factory=list)


@dataclass
class RunnerInfo:
    """A runner registered with the Actions service."""

    name: str
    busy: bool = False


class ActionsClient(Protocol):
    """The part of the Actions API the autoscaler relies on."""

    def list_repository_workflow_runs(self, owner: str, repo: str) -> list[WorkflowRun]:
        """Return the workflow runs of a repository."""
        ...

    def list_workflow_jobs(
        self, owner: str, repo: str, run_id: int, *, page: int, per_page: int
    ) -> tuple[list[WorkflowJob], int]:
        """Return one page of jobs of a run and the next page number, 0 when none is left."""
        ...

    def list_runners(
        self, enterprise: str, organization: str, repository: str
    ) -> list[RunnerInfo]:
        """Return every runner registered at the given scope."""
        ...


@dataclass
class ScaleTarget:
    """The resource being scaled, with what the autoscaler needs to know about it."""

    kind: str = "RunnerDeployment"
    name: str = ""
    enterprise: str = ""
    org: str = ""
    repo: str = ""
    labels: list[str] = field(default_factory=list)
    replicas: int | None = None
    runner_names: Iterable[str] = ()


def _parse_float(value: str, name: str) -> float:
    error = AutoscalingError(f"{_METRICS}.{name} cannot be parsed into a float64")
    if value != value.strip() or "_" in value:
        raise error
    try:
        return float(value)
    except ValueError:
        raise error from None


class Autoscaler:
    """Computes suggested replica counts for a scale target."""

    def __init__(self, client: ActionsClient, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.log = logger or logging.getLogger(__name__)

    def suggest_desired_replicas(
        self, target: ScaleTarget, hra: HorizontalRunnerAutoscaler
    ) -> int | None:
        """Suggest replicas from the configured metrics; None means no suggestion."""
        ident = f"{hra.namespace}/{hra.name}"
        if hra.spec.min_replicas is None:
            raise AutoscalingError(f"horizontalrunnerautoscaler {ident} is missing minReplicas")
        if hra.spec.max_replicas is None:
            raise AutoscalingError(f"horizontalrunnerautoscaler {ident} is missing maxReplicas")

        metrics = hra.spec.metrics
        if not metrics:
            return None
        if len(metrics) > 2:
            raise AutoscalingError(
                "too many autoscaling metrics configured: It must be 0 to 2, "
                f"but got {len(metrics)}"
            )

        primary = metrics[0]
        if primary.type == _TOTAL:
            suggested = self.suggest_replicas_by_queued_and_in_progress_workflow_runs(
                target, hra, primary
            )
        elif primary.type == _BUSY:
            suggested = self.suggest_replicas_by_percentage_runners_busy(target, hra, primary)
        else:
            raise AutoscalingError(
                f'validating autoscaling metrics: unsupported metric type "{primary.type}"'
            )

        if suggested is not None and suggested > 0:
            return suggested
        if len(metrics) == 1:
            return None

        fallback = metrics[1]
        if primary.type != _BUSY or fallback.type != _TOTAL:
            raise AutoscalingError(
                f"invalid HRA Spec: Metrics[0] of {primary.type} cannot be combined with "
                f"Metrics[1] of {fallback.type}: The only allowed combination is "
                "0=PercentageRunnersBusy and 1=TotalNumberOfQueuedAndInProgressWorkflowRuns"
            )
        return self.suggest_replicas_by_queued_and_in_progress_workflow_runs(
            target, hra, fallback
        )

    def suggest_replicas_by_queued_and_in_progress_workflow_runs(
        self,
        target: ScaleTarget,
        hra: HorizontalRunnerAutoscaler,
        metric: MetricSpec | None,
    ) -> int | None:
        """Suggest as many replicas as there are queued and in-progress self-hosted jobs."""
        if target.repo:
            parts = target.repo.split("/")
            if len(parts) < 2:
                raise AutoscalingError(
                    f"repository {target.repo!r} must be in the form OWNER/REPO"
                )
            repos = [(parts[0], parts[1])]
        else:
            if not target.org:
                raise AutoscalingError(
                    "asserting runner deployment spec to detect bug: "
                    "spec.template.organization should not be empty on this code path"
                )
            if metric is None:
                return None
            if not metric.repository_names:
                raise AutoscalingError(
                    f"{_METRICS}.repositoryNames is required and must have one more more "
                    "entries for organizational runner deployment"
                )
            repos = [(target.org, name) for name in metric.repository_names]

        counts: Counter[str] = Counter()
        for owner, repo in repos:
            for run in self.client.list_repository_workflow_runs(owner, repo):
                counts["total"] += 1
                if run.status == "completed":
                    counts["completed"] += 1
                elif run.status in ("in_progress", "queued"):
                    self._count_jobs(target, owner, repo, run, counts)
                else:
                    counts["unknown"] += 1

        necessary = counts["queued"] + counts["in_progress"]
        self.log.debug(
            "Suggested desired replicas of %d by TotalNumberOfQueuedAndInProgressWorkflowRuns "
            "(completed=%d in_progress=%d queued=%d unknown=%d namespace=%s kind=%s name=%s "
            "horizontal_runner_autoscaler=%s)",
            necessary,
            counts["completed"],
            counts["in_progress"],
            counts["queued"],
            counts["unknown"],
            hra.namespace,
            target.kind,
            target.name,
            hra.name,
        )
        return necessary

    def _count_jobs(
        self,
        target: ScaleTarget,
        owner: str,
        repo: str,
        run: WorkflowRun,
        counts: Counter[str],
    ) -> None:
        if run.id == 0:
            counts[run.status] += 1
            return
        jobs = self._list_all_jobs(owner, repo, run.id)
        if jobs is None:
            return
        if not jobs:
            counts[run.status] += 1
            return
        wanted = set(target.labels)
        for job in jobs:
            labels = set(job.labels)
            if "self-hosted" not in labels or not wanted <= labels:
                continue
            if job.status == "completed":
                continue
            if job.status in ("in_progress", "queued"):
                counts[job.status] += 1
            else:
                counts["unknown"] += 1

    def _list_all_jobs(self, owner: str, repo: str, run_id: int) -> list[WorkflowJob] | None:
        jobs: list[WorkflowJob] = []
        page = 0
        while True:
            try:
                batch, next_page = self.client.list_workflow_jobs(
                    owner, repo, run_id, page=page, per_page=JOBS_PER_PAGE
                )
            except Exception:
                self.log.exception("Error listing workflow jobs")
                return None
            jobs.extend(batch)
            if next_page == 0:
                return jobs
            page = next_page

    def suggest_replicas_by_percentage_runners_busy(
        self, target: ScaleTarget, hra: HorizontalRunnerAutoscaler, metric: MetricSpec
    ) -> int:
        """Scale by the fraction of this target's registered runners that are busy."""
        scale_up_threshold = DEFAULT_SCALE_UP_THRESHOLD
        scale_down_threshold = DEFAULT_SCALE_DOWN_THRESHOLD
        scale_up_factor = DEFAULT_SCALE_UP_FACTOR
        scale_down_factor = DEFAULT_SCALE_DOWN_FACTOR

        if metric.scale_up_threshold:
            scale_up_threshold = _parse_float(metric.scale_up_threshold, "scaleUpThreshold")
        if metric.scale_down_threshold:
            scale_down_threshold = _parse_float(
                metric.scale_down_threshold, "scaleDownThreshold"
            )

        scale_up_adjustment = metric.scale_up_adjustment
        if scale_up_adjustment != 0:
            if scale_up_adjustment < 0:
                raise AutoscalingError(f"{_METRICS}.scaleUpAdjustment cannot be lower than 0")
            if metric.scale_up_factor:
                raise AutoscalingError(
                    f"{_METRICS}: scaleUpAdjustment and scaleUpFactor cannot be specified together"
                )
        elif metric.scale_up_factor:
            scale_up_factor = _parse_float(metric.scale_up_factor, "scaleUpFactor")

        scale_down_adjustment = metric.scale_down_adjustment
        if scale_down_adjustment != 0:
            if scale_down_adjustment < 0:
                raise AutoscalingError(f"{_METRICS}.scaleDownAdjustment cannot be lower than 0")
            if metric.scale_down_factor:
                raise AutoscalingError(
                    f"{_METRICS}: scaleDownAdjustment and scaleDownFactor "
                    "cannot be specified together"
                )
        elif metric.scale_down_factor:
            scale_down_factor = _parse_float(metric.scale_down_factor, "scaleDownFactor")

        own_runners = set(target.runner_names)
        runners = self.client.list_runners(target.enterprise, target.org, target.repo)

        before = 1 if target.replicas is None else target.replicas
        registered = [r for r in runners if r.name in own_runners]
        busy = sum(1 for r in registered if r.busy)

        fraction_busy = busy / before if before else math.inf if busy else math.nan
        if fraction_busy >= scale_up_threshold:
            if scale_up_adjustment > 0:
                desired = before + scale_up_adjustment
            else:
                desired = math.ceil(before * scale_up_factor)
        elif fraction_busy < scale_down_threshold:
            if scale_down_adjustment > 0:
                desired = before - scale_down_adjustment
            else:
                desired = int(before * scale_down_factor)
        else:
            desired = before

        self.log.debug(
            "Suggested desired replicas of %d by PercentageRunnersBusy "
            "(replicas_desired_before=%d num_runners=%d num_runners_registered=%d "
            "num_runners_busy=%d namespace=%s kind=%s name=%s horizontal_runner_autoscaler=%s "
            "enterprise=%s organization=%s repository=%s)",
            desired,
            before,
            len(own_runners),
            len(registered),
            busy,
            hra.namespace,
            target.kind,
            target.name,
            hra.name,
            target.enterprise,
            target.org,
            target.repo,
        )
        return desired