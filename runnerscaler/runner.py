"""Runner resource: spec, status, registration state and admission validation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

GROUP = "actions.summerwind.dev"
VERSION = "v1alpha1"
GROUP_VERSION = f"{GROUP}/{VERSION}"

_log = logging.getLogger("runner-resource")


@dataclass
class ObjectMeta:
    """Identifying metadata of a resource."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    generation: int = 0
    creation_timestamp: datetime | None = None


@dataclass(frozen=True)
class FieldError:
    """An invalid value found at a field path."""

    path: str
    value: Any
    detail: str

    def __str__(self) -> str:
        shown = json.dumps(self.value) if isinstance(self.value, str) else repr(self.value)
        return f"{self.path}: Invalid value: {shown}: {self.detail}"


class InvalidError(ValueError):
    """Raised when a resource fails validation."""

    def __init__(self, kind: str, name: str, errors: list[FieldError]) -> None:
        self.kind = kind
        self.group = GROUP
        self.name = name
        self.errors = list(errors)
        if len(self.errors) == 1:
            detail = str(self.errors[0])
        else:
            detail = "[" + ", ".join(str(e) for e in self.errors) + "]"
        super().__init__(f'{kind}.{GROUP} "{name}" is invalid: {detail}')


@dataclass
class RunnerConfig:
    """Where a runner registers and how its container is configured."""

    enterprise: str = ""
    organization: str = ""
    repository: str = ""
    labels: list[str] = field(default_factory=list)
    group: str = ""
    ephemeral: bool | None = None
    image: str = ""
    work_dir: str = ""
    dockerd_within_runner_container: bool | None = None
    docker_enabled: bool | None = None
    docker_mtu: int | None = None
    docker_registry_mirror: str | None = None
    volume_size_limit: str | None = None
    volume_storage_medium: str | None = None


@dataclass
class RunnerPodSpec:
    """Pod-level settings applied to the runner pod."""

    dockerd_container_resources: dict[str, Any] = field(default_factory=dict)
    docker_volume_mounts: list[dict[str, Any]] = field(default_factory=list)
    docker_env: list[dict[str, Any]] = field(default_factory=list)
    containers: list[dict[str, Any]] = field(default_factory=list)
    image_pull_policy: str = ""
    env: list[dict[str, Any]] = field(default_factory=list)
    env_from: list[dict[str, Any]] = field(default_factory=list)
    resources: dict[str, Any] = field(default_factory=dict)
    volume_mounts: list[dict[str, Any]] = field(default_factory=list)
    volumes: list[dict[str, Any]] = field(default_factory=list)
    enable_service_links: bool | None = None
    init_containers: list[dict[str, Any]] = field(default_factory=list)
    node_selector: dict[str, str] = field(default_factory=dict)
    service_account_name: str = ""
    automount_service_account_token: bool | None = None
    sidecar_containers: list[dict[str, Any]] = field(default_factory=list)
    security_context: dict[str, Any] | None = None
    image_pull_secrets: list[dict[str, Any]] = field(default_factory=list)
    affinity: dict[str, Any] | None = None
    tolerations: list[dict[str, Any]] = field(default_factory=list)
    termination_grace_period_seconds: int | None = None
    ephemeral_containers: list[dict[str, Any]] = field(default_factory=list)
    host_aliases: list[dict[str, Any]] = field(default_factory=list)
    topology_spread_constraints: list[dict[str, Any]] = field(default_factory=list)
    runtime_class_name: str | None = None
    dns_config: dict[str, Any] | None = None


@dataclass
class RunnerSpec(RunnerConfig, RunnerPodSpec):
    """Desired state of a runner: its configuration plus its pod settings."""

    def validate_repository(self) -> None:
        """Require exactly one of enterprise, organization or repository."""
        found = sum(bool(v) for v in (self.organization, self.repository, self.enterprise))
        if found == 0:
            raise ValueError("Spec needs enterprise, organization or repository")
        if found > 1:
            raise ValueError(
                "Spec cannot have many fields defined enterprise, organization and repository"
            )


@dataclass
class RunnerStatusRegistration:
    """Registration details recorded for a runner."""

    enterprise: str = ""
    organization: str = ""
    repository: str = ""
    labels: list[str] = field(default_factory=list)
    token: str = ""
    expires_at: datetime | None = None


@dataclass
class RunnerStatus:
    """Observed state of a runner."""

    ready: bool = False
    registration: RunnerStatusRegistration = field(default_factory=RunnerStatusRegistration)
    phase: str = ""
    reason: str = ""
    message: str = ""
    last_registration_check_time: datetime | None = None


@dataclass
class Runner:
    """A self-hosted runner resource."""

    KIND = "Runner"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: RunnerSpec = field(default_factory=RunnerSpec)
    status: RunnerStatus = field(default_factory=RunnerStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    def is_registerable(self, now: datetime | None = None) -> bool:
        """Whether the recorded registration token can still be used."""
        registration = self.status.registration
        if registration.repository != self.spec.repository:
            return False
        if not registration.token:
            return False
        if registration.expires_at is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        return not registration.expires_at < now

    def default(self) -> Runner:
        """Return this runner with defaults applied; no field of a runner has one."""
        return self

    def validate_create(self) -> None:
        _log.info("validate resource to be created: name=%s", self.name)
        self.validate()

    def validate_update(self, old: Runner | None) -> None:
        _log.info("validate resource to be updated: name=%s", self.name)
        self.validate()

    def validate_delete(self) -> bool:
        """Report whether deletion is allowed; it always is."""
        _log.debug("validate resource to be deleted: name=%s", self.name)
        return True

    def validate(self) -> None:
        """Raise InvalidError when the spec is not acceptable."""
        errors: list[FieldError] = []
        try:
            self.spec.validate_repository()
        except ValueError as exc:
            errors.append(FieldError("spec.repository", self.spec.repository, str(exc)))
        if errors:
            raise InvalidError(self.KIND, self.name, errors)


@dataclass
class RunnerList:
    """A collection of runners."""

    items: list[Runner] = field(default_factory=list)