"""Deployment orchestrator: provisions infrastructure and wires up the ALB Controller."""

from __future__ import annotations

import json
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests

from ..config import AppConfig
from ..ssh import SESSION_ERRORS
from ..tools import AzureCLI, CommandError, Helm, Kubectl
from ..utils.logging import get_logger
from .extractor import IdentifierExtractor, PrefixIdentifierExtractor, StatusDocument
from .manifest import ManifestError, load_manifest, validate_manifest
from .models import (
    DeployContext,
    DeploymentOutputs,
    DeploymentRequest,
    InstallResult,
    RunReport,
    StepResult,
    StepStatus,
)
from .retry import RetryCancelled, RetryPolicy

logger = get_logger(__name__)

ALB_KIND = "applicationloadbalancer"
GATEWAY_KIND = "gateway"
ANNOTATION_NAMESPACE = "alb.networking.azure.io/alb-namespace"
ANNOTATION_NAME = "alb.networking.azure.io/alb-name"

StepOutcome = Tuple[StepStatus, str]


class OrchestrationError(RuntimeError):
    """A fatal step failure; the run stops and exits non-zero."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        self.message = message
        super().__init__(f"{step}: {message}")


class DeploymentOrchestrator:
    """
    Runs the deployment as a fixed sequence of steps.

    Steps before the traffic controller poll are fatal on failure. The poll,
    RBAC grants, annotation and summary only ever degrade to warnings, since
    the remote state may already be correct. Every step tolerates an
    existing resource so that re-running is the recovery path.
    """

    def __init__(
        self,
        config: AppConfig,
        azure: AzureCLI,
        helm: Helm,
        kubectl: Kubectl,
        *,
        extractor: Optional[IdentifierExtractor] = None,
        sleep: Callable[[float], None] = time.sleep,
        http_get: Optional[Callable[..., requests.Response]] = None,
        log_dir: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.config = config
        self.azure = azure
        self.helm = helm
        self.kubectl = kubectl
        self.extractor = extractor or PrefixIdentifierExtractor(
            condition_type=config.polling.condition_type,
            prefix=config.polling.identifier_prefix,
        )
        self.sleep = sleep
        self.http_get = http_get or requests.get
        self.cancel_event = cancel_event
        self.log_dir = Path(log_dir) if log_dir else None

        self.deployment_log: dict = {}
        self.current_log_file: Optional[Path] = None

    # ------------------------------------------------------------------ run

    def run(self, request: DeploymentRequest) -> RunReport:
        ctx = DeployContext(request=request)
        self._init_log(ctx, mode="deploy")

        logger.info("=" * 60)
        logger.info("🚀 ALB-MANAGED DEPLOYMENT")
        logger.info("=" * 60)
        logger.info("Resource group: %s (%s)", request.resource_group, request.location)
        logger.info("Executing on:   %s", request.target)

        steps: List[Tuple[str, Callable[[DeployContext], StepOutcome]]] = [
            ("Ensure resource group", self._ensure_namespace),
            ("Deploy infrastructure template", self._provision),
            ("Fetch cluster credentials", self._fetch_credentials),
            ("Install ALB Controller", self._install_controller),
            ("Grant node resource group roles", self._grant_node_roles),
            ("Apply workload manifests", self._apply_manifests),
            ("Wait for traffic controller", self._poll_traffic_controller),
            ("Authorize traffic controller", self._authorize),
            ("Annotate gateway", self._annotate_gateway),
            ("Summarize", self._summarize),
        ]

        try:
            for index, (name, func) in enumerate(steps, 1):
                logger.info("")
                logger.info("📍 Step %d/%d: %s", index, len(steps), name)
                self._run_step(ctx, name, func)
        except OrchestrationError as exc:
            logger.error("❌ %s failed: %s", exc.step, exc.message)
            self._finish_log(ctx, "failed")
            return self._report(ctx, exit_code=1, failed_step=exc.step)
        except (RetryCancelled, KeyboardInterrupt):
            self._finish_log(ctx, "interrupted")
            raise

        report = self._report(ctx, exit_code=0)
        self._finish_log(ctx, "partial" if report.warnings else "success")
        return report

    def summarize(self, request: DeploymentRequest) -> RunReport:
        """Report the current state of an existing deployment without changing it."""
        ctx = DeployContext(request=request)
        self._init_log(ctx, mode="status")
        try:
            self._run_step(ctx, "Summarize", self._summarize)
        except OrchestrationError as exc:
            logger.error("❌ %s failed: %s", exc.step, exc.message)
            self._finish_log(ctx, "failed")
            return self._report(ctx, exit_code=1, failed_step=exc.step)
        report = self._report(ctx, exit_code=0)
        self._finish_log(ctx, "partial" if report.warnings else "success")
        return report

    def _run_step(
        self,
        ctx: DeployContext,
        name: str,
        func: Callable[[DeployContext], StepOutcome],
    ) -> StepResult:
        step = StepResult(name=name)
        ctx.steps.append(step)
        step.start()
        self._save_log(ctx)
        try:
            status, message = func(ctx)
        except OrchestrationError as exc:
            step.finish(StepStatus.FAILED, exc.message)
            self._save_log(ctx)
            raise
        except SESSION_ERRORS as exc:
            failure = OrchestrationError(name, f"Session to {ctx.request.target} failed: {exc}")
            step.finish(StepStatus.FAILED, failure.message)
            self._save_log(ctx)
            raise failure from exc
        step.finish(status, message)
        if status == StepStatus.SUCCESS:
            logger.info("✅ %s", message or name)
        elif status == StepStatus.SKIPPED:
            logger.info("⏭️  Skipped: %s", message)
        self._save_log(ctx)
        return step

    def _report(self, ctx: DeployContext, exit_code: int, failed_step: Optional[str] = None) -> RunReport:
        return RunReport(
            success=exit_code == 0,
            exit_code=exit_code,
            steps=list(ctx.steps),
            traffic_controller_id=ctx.traffic_controller_id,
            gateway_address=ctx.gateway_address,
            failed_step=failed_step,
        )

    # ---------------------------------------------------------------- steps

    def _ensure_namespace(self, ctx: DeployContext) -> StepOutcome:
        request = ctx.request
        try:
            self.azure.create_group(request.resource_group, request.location)
        except CommandError as exc:
            raise OrchestrationError("Ensure resource group", exc.stderr or str(exc)) from exc
        return StepStatus.SUCCESS, f"Resource group {request.resource_group} ready"

    def _provision(self, ctx: DeployContext) -> StepOutcome:
        request = ctx.request
        step = "Deploy infrastructure template"
        logger.info("   Deploying %s (VNet, AKS, identity, RBAC)...", request.template_file)
        try:
            self.azure.create_deployment(
                request.resource_group,
                request.deployment_name,
                request.template_file,
                request.parameters_file,
            )
        except CommandError as exc:
            raise OrchestrationError(step, exc.stderr or str(exc)) from exc

        outputs = self._read_outputs(request)
        try:
            ctx.outputs = DeploymentOutputs.from_mapping(outputs)
        except ValueError as exc:
            raise OrchestrationError(step, str(exc)) from exc

        logger.info("   Cluster Name:       %s", ctx.outputs.cluster_name)
        logger.info("   Subnet ID:          %s", ctx.outputs.subnet_id)
        logger.info("   Identity Client ID: %s", ctx.outputs.identity_client_id)
        return StepStatus.SUCCESS, "Infrastructure deployed"

    def _read_outputs(self, request: DeploymentRequest) -> Dict[str, str]:
        """Outputs of the named deployment, with gaps filled from the latest one in the group."""
        named: Dict[str, str] = {}
        try:
            named = self.azure.deployment_outputs(request.resource_group, request.deployment_name)
        except CommandError as exc:
            logger.debug("Named deployment lookup failed: %s", exc)
        if DeploymentOutputs.is_complete(named):
            return named

        logger.info("   Outputs of %s incomplete, using the latest deployment", request.deployment_name)
        latest: Dict[str, str] = {}
        try:
            latest = self.azure.latest_deployment_outputs(request.resource_group)
        except CommandError as exc:
            logger.warning("   Latest deployment lookup failed: %s", exc.stderr)
        return {**latest, **{key: value for key, value in named.items() if value}}

    def _fetch_credentials(self, ctx: DeployContext) -> StepOutcome:
        try:
            self.azure.get_credentials(ctx.request.resource_group, ctx.outputs.cluster_name)
        except CommandError as exc:
            raise OrchestrationError("Fetch cluster credentials", exc.stderr or str(exc)) from exc
        return StepStatus.SUCCESS, f"Credentials for {ctx.outputs.cluster_name} merged"

    def _install_controller(self, ctx: DeployContext) -> StepOutcome:
        controller = self.config.controller
        values = {
            "albController.namespace": controller.namespace,
            "albController.podIdentity.clientID": ctx.outputs.identity_client_id,
        }

        def attempt(number: int) -> bool:
            if number > 1:
                logger.warning("   Retry attempt %d of %d...", number, controller.install_attempts)
            try:
                self.helm.upgrade_install(
                    controller.release_name,
                    controller.chart,
                    controller.version,
                    controller.namespace,
                    values,
                )
            except CommandError as exc:
                logger.warning("   Installation attempt %d failed: %s", number, exc.stderr)
                return False
            return True

        policy = self._policy(controller.install_attempts, controller.install_retry_delay)
        outcome = policy.run(attempt)
        result = InstallResult(success=outcome.succeeded, attempts=outcome.attempts)
        if not result.success:
            raise OrchestrationError(
                "Install ALB Controller",
                f"Failed to install ALB Controller after {result.attempts} attempts",
            )

        self._wait(controller.settle_seconds, "Waiting for ALB Controller pods to start")
        self._show("ALB Controller pods", lambda: self.kubectl.get_table("pods", controller.namespace))
        self._show("Gateway classes", lambda: self.kubectl.get_table("gatewayclass"))
        return StepStatus.SUCCESS, f"ALB Controller installed (attempt {result.attempts})"

    def _grant_node_roles(self, ctx: DeployContext) -> StepOutcome:
        principal_id = self._principal_id(ctx)
        if not principal_id:
            return StepStatus.WARNING, "Identity principal id unavailable, roles not assigned"
        try:
            subscription = self.azure.subscription_id()
        except CommandError as exc:
            logger.warning("   ⚠️ Could not read subscription id: %s", exc.stderr)
            return StepStatus.WARNING, "Subscription id unavailable, roles not assigned"

        scope = f"/subscriptions/{subscription}/resourceGroups/{self._node_resource_group(ctx)}"
        failed = [
            role for role in self.config.azure.node_group_roles
            if not self._assign_role(principal_id, role, scope)
        ]
        if failed:
            return StepStatus.WARNING, "Roles not assigned: " + ", ".join(failed)
        return StepStatus.SUCCESS, "Node resource group roles assigned"

    def _apply_manifests(self, ctx: DeployContext) -> StepOutcome:
        workload = self.config.workload
        step = "Apply workload manifests"
        try:
            document = load_manifest(
                ctx.request.manifest_template,
                workload.subnet_placeholder,
                ctx.outputs.subnet_id,
            )
            documents = validate_manifest(document)
        except ManifestError as exc:
            raise OrchestrationError(step, str(exc)) from exc

        try:
            output = self.kubectl.apply(document)
        except CommandError as exc:
            raise OrchestrationError(step, exc.stderr or str(exc)) from exc
        for line in output.splitlines():
            logger.info("   %s", line)

        self._wait(workload.settle_seconds, "Waiting for application pods to start")
        self._show("Application pods", lambda: self.kubectl.get_table("pods", workload.namespace))
        return StepStatus.SUCCESS, f"Applied {len(documents)} manifest documents"

    def _poll_traffic_controller(self, ctx: DeployContext) -> StepOutcome:
        polling = self.config.polling
        logger.info(
            "   Up to %d checks every %ds; the ALB Controller creates the traffic controller,"
            " its frontend and association, then updates the Gateway address",
            polling.max_iterations,
            polling.interval_seconds,
        )

        def attempt(number: int) -> Optional[str]:
            logger.info("   [%d/%d] Checking for traffic controller...", number, polling.max_iterations)
            return self.extractor.extract(self._fetch_status())

        policy = self._policy(polling.max_iterations, polling.interval_seconds, delay_before_first=True)
        outcome = policy.run(attempt, succeeded=bool)
        identifier = outcome.value if outcome.succeeded else None

        if not identifier:
            logger.warning("   Polling timeout reached. Attempting one final check...")
            identifier = self.extractor.extract(self._fetch_status())

        if not identifier:
            workload = self.config.workload
            logger.warning("   ⚠️ Traffic controller not found. The ALB Controller may still be creating it.")
            logger.warning(
                "   Check with: kubectl get %s %s -n %s -o yaml",
                ALB_KIND, workload.alb_name, workload.namespace,
            )
            return StepStatus.WARNING, f"Traffic controller not found after {outcome.attempts + 1} checks"

        ctx.traffic_controller_id = identifier
        return StepStatus.SUCCESS, f"Traffic controller created: {identifier}"

    def _authorize(self, ctx: DeployContext) -> StepOutcome:
        if not ctx.traffic_controller_id:
            return StepStatus.SKIPPED, "No traffic controller id"
        principal_id = self._principal_id(ctx)
        if not principal_id:
            return StepStatus.WARNING, "Identity principal id unavailable, role not assigned"
        role = self.config.azure.config_manager_role
        if self._assign_role(principal_id, role, ctx.traffic_controller_id):
            return StepStatus.SUCCESS, "Configuration Manager role in place"
        return StepStatus.WARNING, "Configuration Manager role not assigned"

    def _annotate_gateway(self, ctx: DeployContext) -> StepOutcome:
        if not ctx.traffic_controller_id:
            return StepStatus.SKIPPED, "No traffic controller id"
        workload = self.config.workload
        annotations = {
            ANNOTATION_NAMESPACE: workload.namespace,
            ANNOTATION_NAME: workload.alb_name,
        }
        status, message = StepStatus.SUCCESS, "Gateway annotations added"
        try:
            self.kubectl.annotate(GATEWAY_KIND, workload.gateway_name, workload.namespace, annotations)
        except CommandError as exc:
            logger.warning("   ⚠️ Failed to add annotations: %s", exc.stderr)
            status, message = StepStatus.WARNING, "Gateway annotations not added"

        self._wait(self.config.polling.reconcile_seconds, "Waiting for ALB Controller to reconcile")
        return status, message

    def _summarize(self, ctx: DeployContext) -> StepOutcome:
        workload = self.config.workload
        self._show("Gateway status", lambda: self.kubectl.get_table(GATEWAY_KIND, workload.namespace))
        self._show("ApplicationLoadBalancer status", lambda: self.kubectl.get_table(ALB_KIND, workload.namespace))
        self._show("Application pods", lambda: self.kubectl.get_table("pods", workload.namespace))

        try:
            address = self.kubectl.jsonpath(
                GATEWAY_KIND, workload.gateway_name, workload.namespace, "{.status.addresses[0].value}"
            )
        except CommandError as exc:
            logger.debug("Gateway address lookup failed: %s", exc)
            address = ""

        if not address:
            logger.warning("   Gateway address not yet available. Wait a few more minutes and check:")
            logger.warning("   kubectl get gateway %s -n %s", workload.gateway_name, workload.namespace)
            return StepStatus.WARNING, "Gateway address not yet available"

        ctx.gateway_address = address
        url = f"http://{address}"
        logger.info("   🌐 External URL: %s", url)
        if workload.probe_endpoint:
            self._probe(url)
        return StepStatus.SUCCESS, f"Gateway reachable at {url}"

    # -------------------------------------------------------------- helpers

    def _policy(self, attempts: int, delay: float, delay_before_first: bool = False) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=attempts,
            delay=delay,
            delay_before_first=delay_before_first,
            sleep=self.sleep,
            cancel_event=self.cancel_event,
        )

    def _wait(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        logger.info("   ⏳ %s (%ds)...", reason, seconds)
        self.sleep(seconds)

    def _show(self, title: str, fetch: Callable[[], str]) -> None:
        """Log read-only command output; failures are informational only."""
        try:
            output = fetch()
        except CommandError as exc:
            logger.warning("   %s unavailable: %s", title, exc.stderr)
            return
        logger.info("   %s:", title)
        for line in output.splitlines():
            logger.info("   │ %s", line)

    def _fetch_status(self) -> StatusDocument:
        workload = self.config.workload
        try:
            resource = self.kubectl.get_json(ALB_KIND, workload.alb_name, workload.namespace)
        except CommandError as exc:
            logger.debug("ALB status lookup failed: %s", exc)
            return StatusDocument()
        return StatusDocument.from_dict(resource)

    def _principal_id(self, ctx: DeployContext) -> Optional[str]:
        if ctx.principal_id:
            return ctx.principal_id
        try:
            principal_id = self.azure.identity_principal_id(
                ctx.request.resource_group, self.config.azure.identity_name
            )
        except CommandError as exc:
            logger.warning("   ⚠️ Could not read identity %s: %s", self.config.azure.identity_name, exc.stderr)
            return None
        ctx.principal_id = principal_id or None
        return ctx.principal_id

    def _node_resource_group(self, ctx: DeployContext) -> str:
        request = ctx.request
        cluster = ctx.outputs.cluster_name
        try:
            node_group = self.azure.node_resource_group(request.resource_group, cluster)
        except CommandError as exc:
            logger.debug("Node resource group lookup failed: %s", exc)
            node_group = ""
        return node_group or f"MC_{request.resource_group}_{cluster}_{request.location}"

    def _assign_role(self, principal_id: str, role: str, scope: str) -> bool:
        logger.info("   Assigning %s on %s...", role, scope)
        try:
            self.azure.create_role_assignment(principal_id, role, scope)
        except CommandError as exc:
            if exc.already_exists:
                logger.info("   ✓ %s already assigned", role)
                return True
            logger.warning("   ⚠️ Could not assign %s: %s", role, exc.stderr)
            return False
        logger.info("   ✓ %s assigned", role)
        return True

    def _probe(self, url: str) -> None:
        try:
            response = self.http_get(url, timeout=self.config.workload.probe_timeout)
        except requests.RequestException as exc:
            logger.warning("   ⚠️ %s not answering yet: %s", url, exc)
            return
        logger.info("   %s answered HTTP %s", url, response.status_code)

    # ------------------------------------------------------------------ log

    def _init_log(self, ctx: DeployContext, mode: str) -> None:
        request = ctx.request
        self.deployment_log = {
            "mode": mode,
            "resource_group": request.resource_group,
            "location": request.location,
            "target": request.target,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "steps": [],
            "traffic_controller_id": None,
            "gateway_address": None,
        }
        if self.log_dir is None:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.current_log_file = self.log_dir / f"{mode}_{timestamp}.json"
        self._save_log(ctx)

    def _finish_log(self, ctx: DeployContext, status: str) -> None:
        self.deployment_log["status"] = status
        self.deployment_log["end_time"] = datetime.now().isoformat()
        self._save_log(ctx)
        if self.current_log_file:
            logger.info("📄 Run log: %s", self.current_log_file)

    def _save_log(self, ctx: DeployContext) -> None:
        self.deployment_log["steps"] = [step.to_dict() for step in ctx.steps]
        self.deployment_log["traffic_controller_id"] = ctx.traffic_controller_id
        self.deployment_log["gateway_address"] = ctx.gateway_address
        if not self.current_log_file:
            return
        with open(self.current_log_file, "w", encoding="utf-8") as handle:
            json.dump(self.deployment_log, handle, ensure_ascii=False, indent=2)
