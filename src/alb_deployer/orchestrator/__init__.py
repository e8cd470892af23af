"""Orchestrator module for the ALB-managed deployment.

- DeploymentOrchestrator: Runs the fixed sequence of deployment steps
- RetryPolicy: Bounded retry used for the controller install and status polling
- IdentifierExtractor: Pulls the traffic controller id out of ALB status conditions
- DeployContext/RunReport: State passed between steps and the final outcome
"""

from .extractor import Condition, IdentifierExtractor, PrefixIdentifierExtractor, StatusDocument
from .manifest import ManifestError, load_manifest, render_manifest, validate_manifest
from .models import (
    DeployContext,
    DeploymentOutputs,
    DeploymentRequest,
    InstallResult,
    RunReport,
    StepResult,
    StepStatus,
)
from .orchestrator import DeploymentOrchestrator, OrchestrationError
from .retry import RetryCancelled, RetryOutcome, RetryPolicy

__all__ = [
    "Condition",
    "DeployContext",
    "DeploymentOrchestrator",
    "DeploymentOutputs",
    "DeploymentRequest",
    "IdentifierExtractor",
    "InstallResult",
    "ManifestError",
    "OrchestrationError",
    "PrefixIdentifierExtractor",
    "RetryCancelled",
    "RetryOutcome",
    "RetryPolicy",
    "RunReport",
    "StatusDocument",
    "StepResult",
    "StepStatus",
    "load_manifest",
    "render_manifest",
    "validate_manifest",
]
