"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

REQUIRED_OUTPUTS = ("clusterName", "appGwSubnetId", "albIdentityClientId")


class StepStatus(Enum):
    """Outcome of a single orchestration step."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DeploymentOutputs:
    """Outputs of the infrastructure deployment, immutable once read."""

    cluster_name: str
    subnet_id: str
    identity_client_id: str
    raw: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, outputs: Mapping[str, str]) -> "DeploymentOutputs":
        missing = [name for name in REQUIRED_OUTPUTS if not outputs.get(name)]
        if missing:
            raise ValueError("Deployment outputs missing: " + ", ".join(missing))
        return cls(
            cluster_name=outputs["clusterName"],
            subnet_id=outputs["appGwSubnetId"],
            identity_client_id=outputs["albIdentityClientId"],
            raw=dict(outputs),
        )

    @staticmethod
    def is_complete(outputs: Mapping[str, str]) -> bool:
        return all(outputs.get(name) for name in REQUIRED_OUTPUTS)


@dataclass
class InstallResult:
    success: bool
    attempts: int


@dataclass
class StepResult:
    name: str
    status: StepStatus = StepStatus.PENDING
    message: str = ""
    started_at: str = ""
    finished_at: str = ""

    def start(self) -> None:
        self.status = StepStatus.RUNNING
        self.started_at = datetime.now().isoformat()

    def finish(self, status: StepStatus, message: str = "") -> None:
        self.status = status
        self.message = message
        self.finished_at = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class DeploymentRequest:
    """Where and what to deploy, resolved from CLI arguments and config."""

    resource_group: str
    location: str
    template_file: str
    parameters_file: str
    deployment_name: str
    manifest_template: str
    target: str = "local"


@dataclass
class DeployContext:
    """State handed from one stage to the next during a single run."""

    request: DeploymentRequest
    principal_id: Optional[str] = None
    gateway_address: Optional[str] = None
    steps: List[StepResult] = field(default_factory=list)
    _outputs: Optional[DeploymentOutputs] = None
    _traffic_controller_id: Optional[str] = None

    @property
    def outputs(self) -> DeploymentOutputs:
        if self._outputs is None:
            raise RuntimeError("Deployment outputs have not been read yet")
        return self._outputs

    @outputs.setter
    def outputs(self, value: DeploymentOutputs) -> None:
        if self._outputs is not None:
            raise RuntimeError("Deployment outputs are already set")
        self._outputs = value

    @property
    def traffic_controller_id(self) -> Optional[str]:
        return self._traffic_controller_id

    @traffic_controller_id.setter
    def traffic_controller_id(self, value: str) -> None:
        if not value:
            raise ValueError("Traffic controller id must not be empty")
        if self._traffic_controller_id is not None:
            raise RuntimeError("Traffic controller id is already set")
        self._traffic_controller_id = value


@dataclass
class RunReport:
    success: bool
    exit_code: int
    steps: List[StepResult]
    traffic_controller_id: Optional[str] = None
    gateway_address: Optional[str] = None
    failed_step: Optional[str] = None

    @property
    def warnings(self) -> List[StepResult]:
        return [step for step in self.steps if step.status == StepStatus.WARNING]
