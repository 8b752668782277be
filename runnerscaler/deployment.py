"""Runner deployments, runner replica sets and runner sets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from runnerscaler.runner import FieldError, InvalidError, ObjectMeta, RunnerConfig, RunnerSpec

_deployment_log = logging.getLogger("runnerdeployment-resource")
_replicaset_log = logging.getLogger("runnerreplicaset-resource")

_TEMPLATE_REPOSITORY_PATH = "spec.template.spec.repository"


def _validate_template(kind: str, name: str, template_spec: RunnerSpec) -> None:
    """Raise InvalidError when a runner template spec is not acceptable."""
    errors: list[FieldError] = []
    try:
        template_spec.validate_repository()
    except ValueError as exc:
        errors.append(FieldError(_TEMPLATE_REPOSITORY_PATH, template_spec.repository, str(exc)))
    if errors:
        raise InvalidError(kind, name, errors)


@dataclass
class LabelSelector:
    """Selects resources by their labels."""

    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class RunnerTemplate:
    """Template from which runners are created."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: RunnerSpec = field(default_factory=RunnerSpec)


@dataclass
class RunnerDeploymentSpec:
    """Desired state of a runner deployment."""

    replicas: int | None = None
    effective_time: datetime | None = None
    selector: LabelSelector | None = None
    template: RunnerTemplate = field(default_factory=RunnerTemplate)


@dataclass
class RunnerDeploymentStatus:
    """Observed state of a runner deployment."""

    available_replicas: int | None = None
    ready_replicas: int | None = None
    updated_replicas: int | None = None
    desired_replicas: int | None = None
    replicas: int | None = None


@dataclass
class RunnerDeployment:
    """A set of runners kept at a desired count and template."""

    KIND = "RunnerDeployment"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: RunnerDeploymentSpec = field(default_factory=RunnerDeploymentSpec)
    status: RunnerDeploymentStatus = field(default_factory=RunnerDeploymentStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    def default(self) -> RunnerDeployment:
        """Return this deployment with defaults applied; it has none to fill."""
        return self

    def validate_create(self) -> None:
        _deployment_log.info("validate resource to be created: name=%s", self.name)
        self.validate()

    def validate_update(self, old: RunnerDeployment | None) -> None:
        _deployment_log.info("validate resource to be updated: name=%s", self.name)
        self.validate()

    def validate_delete(self) -> bool:
        """Report whether deletion is allowed; it always is."""
        _deployment_log.debug("validate resource to be deleted: name=%s", self.name)
        return True

    def validate(self) -> None:
        """Raise InvalidError when the runner template is not acceptable."""
        _validate_template(self.KIND, self.name, self.spec.template.spec)


@dataclass
class RunnerDeploymentList:
    """A collection of runner deployments."""

    items: list[RunnerDeployment] = field(default_factory=list)


@dataclass
class RunnerReplicaSetSpec:
    """Desired state of a runner replica set."""

    replicas: int | None = None
    effective_time: datetime | None = None
    selector: LabelSelector | None = None
    template: RunnerTemplate = field(default_factory=RunnerTemplate)


@dataclass
class RunnerReplicaSetStatus:
    """Observed state of a runner replica set."""

    replicas: int | None = None
    ready_replicas: int | None = None
    available_replicas: int | None = None


@dataclass
class RunnerReplicaSet:
    """A fixed-size group of runners created from one template."""

    KIND = "RunnerReplicaSet"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: RunnerReplicaSetSpec = field(default_factory=RunnerReplicaSetSpec)
    status: RunnerReplicaSetStatus = field(default_factory=RunnerReplicaSetStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    def default(self) -> RunnerReplicaSet:
        """Return this replica set with defaults applied; it has none to fill."""
        return self

    def validate_create(self) -> None:
        _replicaset_log.info("validate resource to be created: name=%s", self.name)
        self.validate()

    def validate_update(self, old: RunnerReplicaSet | None) -> None:
        _replicaset_log.info("validate resource to be updated: name=%s", self.name)
        self.validate()

    def validate_delete(self) -> bool:
        """Report whether deletion is allowed; it always is."""
        _replicaset_log.debug("validate resource to be deleted: name=%s", self.name)
        return True

    def validate(self) -> None:
        """Raise InvalidError when the runner template is not acceptable."""
        _validate_template(self.KIND, self.name, self.spec.template.spec)


@dataclass
class RunnerReplicaSetList:
    """A collection of runner replica sets."""

    items: list[RunnerReplicaSet] = field(default_factory=list)


@dataclass
class RunnerSetSpec(RunnerConfig):
    """Desired state of a runner set: runner configuration plus stateful-set settings."""

    effective_time: datetime | None = None
    replicas: int | None = None
    selector: LabelSelector | None = None
    template: dict[str, Any] = field(default_factory=dict)
    volume_claim_templates: list[dict[str, Any]] = field(default_factory=list)
    service_name: str = ""
    pod_management_policy: str = ""
    update_strategy: dict[str, Any] = field(default_factory=dict)
    revision_history_limit: int | None = None
    min_ready_seconds: int = 0


@dataclass
class RunnerSetStatus:
    """Observed state of a runner set."""

    current_replicas: int | None = None
    ready_replicas: int | None = None
    updated_replicas: int | None = None
    desired_replicas: int | None = None
    replicas: int | None = None


@dataclass
class RunnerSet:
    """Runners managed as a stateful set."""

    KIND = "RunnerSet"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: RunnerSetSpec = field(default_factory=RunnerSetSpec)
    status: RunnerSetStatus = field(default_factory=RunnerSetStatus)

    @property
    def name(self) -> str:
        return self.metadata.name


@dataclass
class RunnerSetList:
    """A collection of runner sets."""

    items: list[RunnerSet] = field(default_factory=list)