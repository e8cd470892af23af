"""Pre-flight probe for the CLIs the deployment depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .tools import AzureCLI, CommandError, Helm, Kubectl
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ToolchainFacts:
    """What is installed and signed in on the machine running the CLIs."""

    has_az: bool = False
    has_kubectl: bool = False
    has_helm: bool = False
    az_logged_in: bool = False
    az_version: str = ""
    helm_version: str = ""
    kubectl_version: str = ""
    subscription: Optional[str] = None

    def missing(self) -> List[str]:
        problems = []
        if not self.has_az:
            problems.append("az CLI not installed")
        elif not self.az_logged_in:
            problems.append("az CLI not logged in (run `az login`)")
        if not self.has_helm:
            problems.append("helm not installed")
        if not self.has_kubectl:
            problems.append("kubectl not installed")
        return problems

    def to_payload(self) -> dict:
        return {
            "az": self.az_version or None,
            "helm": self.helm_version or None,
            "kubectl": self.kubectl_version or None,
            "logged_in": self.az_logged_in,
            "subscription": self.subscription,
        }


class ToolProbe:
    """Collects ToolchainFacts through the same wrappers the deployment uses."""

    def collect(self, azure: AzureCLI, helm: Helm, kubectl: Kubectl) -> ToolchainFacts:
        facts = ToolchainFacts()

        try:
            facts.az_version = str(azure.version().get("azure-cli", ""))
            facts.has_az = True
        except CommandError as exc:
            logger.debug("az version failed: %s", exc)

        if facts.has_az:
            try:
                account = azure.account()
                facts.az_logged_in = bool(account.get("id"))
                facts.subscription = account.get("name") or account.get("id")
            except CommandError as exc:
                logger.debug("az account show failed: %s", exc)

        try:
            facts.helm_version = helm.version()
            facts.has_helm = True
        except CommandError as exc:
            logger.debug("helm version failed: %s", exc)

        try:
            client = kubectl.client_version().get("clientVersion", {})
            facts.kubectl_version = str(client.get("gitVersion", ""))
            facts.has_kubectl = True
        except CommandError as exc:
            logger.debug("kubectl version failed: %s", exc)

        return facts
