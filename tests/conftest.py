"""Shared fixtures for the orchestrator and tool wrapper tests."""

import json
from typing import List, Optional

import pytest

from alb_deployer.config import AppConfig
from alb_deployer.orchestrator import DeploymentOrchestrator, DeploymentRequest
from alb_deployer.tools import AzureCLI, Helm, Kubectl

from fakes import OUTPUTS, TRAFFIC_CONTROLLER_ID, FakeResponse, FakeSession, RecordingSleep, alb_status


@pytest.fixture
def manifest_file(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text(
        "apiVersion: alb.networking.azure.io/v1\n"
        "kind: ApplicationLoadBalancer\n"
        "metadata:\n"
        "  name: alb-demo\n"
        "  namespace: demo\n"
        "spec:\n"
        "  associations:\n"
        "    - <SUBNET_ID>\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def session() -> FakeSession:
    """A session scripted for a deployment where everything succeeds first time."""
    fake = FakeSession()
    fake.on("az", "deployment", "group", "show", stdout=json.dumps(OUTPUTS))
    fake.on("az", "identity", "show", stdout="principal-123")
    fake.on("az", "account", "show", stdout="sub-1")
    fake.on("az", "aks", "show", stdout="MC_rg-demo_aks-demo_westus")
    fake.on("kubectl", "apply", stdout="applicationloadbalancer.alb.networking.azure.io/alb-demo created")
    fake.on(
        "kubectl", "get", "applicationloadbalancer", "alb-demo",
        stdout=alb_status(f"Valid Application Gateway for Containers resource alb-id={TRAFFIC_CONTROLLER_ID}"),
    )
    fake.on("kubectl", "get", "gateway", "gateway-demo", stdout="20.1.2.3")
    return fake


@pytest.fixture
def request_for(manifest_file):
    def build(**overrides) -> DeploymentRequest:
        values = dict(
            resource_group="rg-demo",
            location="westus",
            template_file="template.json",
            parameters_file="parameters.json",
            deployment_name="template",
            manifest_template=str(manifest_file),
            target="fake",
        )
        values.update(overrides)
        return DeploymentRequest(**values)

    return build


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_orchestrator(sleeper):
    def build(session: FakeSession, config: Optional[AppConfig] = None, **kwargs) -> DeploymentOrchestrator:
        probes: List[str] = []

        def http_get(url, timeout=None):
            probes.append(url)
            return FakeResponse()

        orchestrator = DeploymentOrchestrator(
            config=config or AppConfig(),
            azure=AzureCLI(session),
            helm=Helm(session),
            kubectl=Kubectl(session),
            sleep=sleeper,
            http_get=http_get,
            **kwargs,
        )
        orchestrator.probed_urls = probes  # type: ignore[attr-defined]
        return orchestrator

    return build
