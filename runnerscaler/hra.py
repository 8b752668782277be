"""Horizontal runner autoscaler resource: spec, status and their parts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from runnerscaler.runner import ObjectMeta

CACHE_ENTRY_KEY_DESIRED_REPLICAS = "desiredReplicas"

SCALE_TARGET_KINDS = ("RunnerDeployment", "RunnerSet")
RECURRENCE_FREQUENCIES = ("Daily", "Weekly", "Monthly", "Yearly")


class AutoscalingMetricType(str, Enum):
    """Metrics from which a desired number of runners can be computed."""

    TOTAL_NUMBER_OF_QUEUED_AND_IN_PROGRESS_WORKFLOW_RUNS = (
        "TotalNumberOfQueuedAndInProgressWorkflowRuns"
    )
    PERCENTAGE_RUNNERS_BUSY = "PercentageRunnersBusy"

    def __str__(self) -> str:
        return self.value


@dataclass
class ScaleTargetRef:
    """Reference to the scaled resource, such as a runner deployment."""

    kind: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        if self.kind and self.kind not in SCALE_TARGET_KINDS:
            raise ValueError(
                f"scaleTargetRef.kind must be one of {', '.join(SCALE_TARGET_KINDS)}, "
                f"got {self.kind!r}"
            )


@dataclass
class CheckRunSpec:
    """Condition for scaling up on a check_run event."""

    types: list[str] = field(default_factory=list)
    status: str = ""
    names: list[str] = field(default_factory=list)
    repositories: list[str] = field(default_factory=list)


@dataclass
class PullRequestSpec:
    """Condition for scaling up on a pull_request event."""

    types: list[str] = field(default_factory=list)
    branches: list[str] = field(default_factory=list)


@dataclass
class PushSpec:
    """Condition for scaling up on a push event."""


@dataclass
class WorkflowJobSpec:
    """Condition for scaling up on a workflow_job event."""


@dataclass
class GitHubEventScaleUpTriggerSpec:
    """Webhook events that can trigger a scale-up."""

    check_run: CheckRunSpec | None = None
    pull_request: PullRequestSpec | None = None
    push: PushSpec | None = None
    workflow_job: WorkflowJobSpec | None = None


@dataclass
class ScaleUpTrigger:
    """Adds runners for a while whenever a matching webhook event arrives."""

    github_event: GitHubEventScaleUpTriggerSpec | None = None
    amount: int = 0
    duration: timedelta = field(default_factory=timedelta)


@dataclass
class CapacityReservation:
    """Replicas temporarily added to the scale target until the expiration time."""

    name: str = ""
    expiration_time: datetime | None = None
    replicas: int = 0
    effective_time: datetime | None = None


@dataclass
class MetricSpec:
    """One metric used to compute the desired number of runners."""

    type: str = ""
    repository_names: list[str] = field(default_factory=list)
    scale_up_threshold: str = ""
    scale_down_threshold: str = ""
    scale_up_factor: str = ""
    scale_down_factor: str = ""
    scale_up_adjustment: int = 0
    scale_down_adjustment: int = 0


@dataclass
class RecurrenceRule:
    """How often a scheduled override recurs, and until when."""

    frequency: str = ""
    until_time: datetime | None = None

    def __post_init__(self) -> None:
        if self.frequency and self.frequency not in RECURRENCE_FREQUENCIES:
            raise ValueError(
                f"recurrenceRule.frequency must be one of "
                f"{', '.join(RECURRENCE_FREQUENCIES)}, got {self.frequency!r}"
            )


@dataclass
class ScheduledOverride:
    """Overrides a few autoscaler fields between a start and an end time."""

    start_time: datetime
    end_time: datetime
    min_replicas: int | None = None
    recurrence_rule: RecurrenceRule = field(default_factory=RecurrenceRule)

    def __post_init__(self) -> None:
        if self.min_replicas is not None and self.min_replicas < 0:
            raise ValueError(
                f"scheduledOverrides[].minReplicas must be at least 0, got {self.min_replicas}"
            )


@dataclass
class CacheEntry:
    """A cached value that is valid until its expiration time."""

    key: str = ""
    value: int = 0
    expiration_time: datetime | None = None


@dataclass
class HorizontalRunnerAutoscalerSpec:
    """Desired state of a horizontal runner autoscaler."""

    scale_target_ref: ScaleTargetRef = field(default_factory=ScaleTargetRef)
    min_replicas: int | None = None
    max_replicas: int | None = None
    scale_down_delay_seconds_after_scale_up: int | None = None
    metrics: list[MetricSpec] = field(default_factory=list)
    scale_up_triggers: list[ScaleUpTrigger] = field(default_factory=list)
    capacity_reservations: list[CapacityReservation] = field(default_factory=list)
    scheduled_overrides: list[ScheduledOverride] = field(default_factory=list)


@dataclass
class HorizontalRunnerAutoscalerStatus:
    """Observed state of a horizontal runner autoscaler."""

    observed_generation: int = 0
    desired_replicas: int | None = None
    last_successful_scale_out_time: datetime | None = None
    cache_entries: list[CacheEntry] = field(default_factory=list)
    scheduled_overrides_summary: str | None = None


@dataclass
class HorizontalRunnerAutoscaler:
    """Scales a runner deployment or runner set by demand."""

    KIND = "HorizontalRunnerAutoscaler"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: HorizontalRunnerAutoscalerSpec = field(default_factory=HorizontalRunnerAutoscalerSpec)
    status: HorizontalRunnerAutoscalerStatus = field(
        default_factory=HorizontalRunnerAutoscalerStatus
    )

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


@dataclass
class HorizontalRunnerAutoscalerList:
    """A collection of horizontal runner autoscalers."""

    items: list[HorizontalRunnerAutoscaler] = field(default_factory=list)