# runnerscaler

Resource models, validation rules and replica autoscaling logic for fleets of
self-hosted CI runners.

## Modules

- `runnerscaler.runner`: the `Runner` resource and its parts: `ObjectMeta`,
  `RunnerSpec` (which combines `RunnerConfig` and `RunnerPodSpec`),
  `RunnerStatus` and `RunnerStatusRegistration`. A runner can be checked
  with `validate`, `validate_create` and `validate_update`, which raise
  `InvalidError` (a `ValueError` carrying a list of `FieldError`s).
  `Runner.is_registerable(now)` tells whether the recorded registration
  token matches the spec's repository and has not yet expired.
- `runnerscaler.deployment`: `RunnerDeployment`, `RunnerReplicaSet` and
  `RunnerSet`. Deployments and replica sets are built from a
  `RunnerTemplate`, and each has its own validation of the template spec.
- `runnerscaler.hra`: the `HorizontalRunnerAutoscaler` resource with its
  `MetricSpec` entries, `ScaleUpTrigger`s, `CapacityReservation`s,
  `ScheduledOverride`s and `CacheEntry`s. `AutoscalingMetricType` names the
  supported metrics.
- `runnerscaler.autoscaling`: the `Autoscaler`. It suggests a desired
  replica count for a `ScaleTarget`, either by counting queued and
  in-progress self-hosted jobs
  (`TotalNumberOfQueuedAndInProgressWorkflowRuns`) or by measuring the share
  of the target's runners that are busy (`PercentageRunnersBusy`).

## Installation

```
pip install runnerscaler
```

## Validating a runner

```python
from runnerscaler.runner import InvalidError, ObjectMeta, Runner, RunnerSpec

runner = Runner(metadata=ObjectMeta(name="app"), spec=RunnerSpec(repository="octo/app"))
runner.validate()  # passes

bad = Runner(
    metadata=ObjectMeta(name="bad"),
    spec=RunnerSpec(organization="octo", repository="octo/app"),
)
try:
    bad.validate()
except InvalidError as exc:
    print(exc)
```

A runner spec must name exactly one of enterprise, organization or
repository. `RunnerDeployment.validate` and `RunnerReplicaSet.validate`
apply the same rule to `spec.template.spec`.

## Suggesting replicas

`Autoscaler` reads workflow runs, workflow jobs and registered runners
through an `ActionsClient`. This is a protocol with three methods:

- `list_repository_workflow_runs(owner, repo)` returns a list of `WorkflowRun`.
- `list_workflow_jobs(owner, repo, run_id, *, page, per_page)` returns one page
  of `WorkflowJob` together with the next page number, or 0 when there are no
  more pages.
- `list_runners(enterprise, organization, repository)` returns a list of
  `RunnerInfo`.

```python
from runnerscaler.autoscaling import Autoscaler, ScaleTarget
from runnerscaler.hra import HorizontalRunnerAutoscaler, HorizontalRunnerAutoscalerSpec, MetricSpec

hra = HorizontalRunnerAutoscaler(
    spec=HorizontalRunnerAutoscalerSpec(
        min_replicas=1,
        max_replicas=5,
        metrics=[MetricSpec(type="TotalNumberOfQueuedAndInProgressWorkflowRuns")],
    )
)
target = ScaleTarget(name="app-runners", repo="octo/app")

autoscaler = Autoscaler(client)
replicas = autoscaler.suggest_desired_replicas(target, hra)
```

A job is counted only if it carries the `self-hosted` label and every label
of the target. The `PercentageRunnersBusy` metric scales up or down by a
factor or a fixed adjustment once the busy fraction crosses its thresholds.
The defaults are an up threshold of 0.8, a down threshold of 0.3, an up
factor of 1.3 and a down factor of 0.7. It may be followed by a
`TotalNumberOfQueuedAndInProgressWorkflowRuns` metric, which is used as a
fallback.

The result is `None` when no metric gives a suggestion. A misconfigured
autoscaler raises `AutoscalingError`.

## What this package does not do

It does not talk to a CI service or to a cluster. No `ActionsClient`
implementation is included. The package does not apply the suggested count
to anything, and it does not clamp the count to `min_replicas` or
`max_replicas`. It does not evaluate scheduled overrides, capacity
reservations or the cache entries. Those fields are only modelled. It has no
command-line program and no webhook server.

## Running the tests

```
pip install "runnerscaler[test]"
pytest
```