"""Tests for the deployment orchestrator."""

import json
import threading

import paramiko
import pytest

from alb_deployer.orchestrator import RetryCancelled, StepStatus

from fakes import OUTPUTS, SUBNET_ID, TRAFFIC_CONTROLLER_ID, alb_status

ALB_GET = ("kubectl", "get", "applicationloadbalancer", "alb-demo")


def step_statuses(report):
    return {step.name: step.status for step in report.steps}


class TestHappyPath:
    def test_runs_every_step_and_exits_zero(self, session, make_orchestrator, request_for):
        orchestrator = make_orchestrator(session)

        report = orchestrator.run(request_for())

        assert report.exit_code == 0
        assert report.success
        assert report.failed_step is None
        assert report.traffic_controller_id == TRAFFIC_CONTROLLER_ID
        assert report.gateway_address == "20.1.2.3"
        assert len(report.steps) == 10
        assert report.warnings == []
        assert orchestrator.probed_urls == ["http://20.1.2.3"]

    def test_waits_follow_configured_delays(self, session, make_orchestrator, request_for, sleeper):
        make_orchestrator(session).run(request_for())

        # controller settle, workload settle, one poll interval, reconcile
        assert sleeper.calls == [45, 20, 30, 60]

    def test_helm_gets_identity_client_id(self, session, make_orchestrator, request_for):
        make_orchestrator(session).run(request_for())

        helm_calls = session.commands("helm")
        assert len(helm_calls) == 1
        args = helm_calls[0]
        assert args[1:3] == ["upgrade", "--install"]
        assert "albController.podIdentity.clientID=client-123" in args
        assert "albController.namespace=azure-alb-system" in args
        assert args[args.index("--version") + 1] == "1.8.12"

    def test_subnet_id_substituted_into_applied_manifest(self, session, make_orchestrator, request_for):
        make_orchestrator(session).run(request_for())

        applied = [stdin for args, stdin in session.calls if args[:2] == ["kubectl", "apply"]]
        assert len(applied) == 1
        assert SUBNET_ID in applied[0]
        assert "<SUBNET_ID>" not in applied[0]

    def test_roles_scoped_to_node_group_and_traffic_controller(self, session, make_orchestrator, request_for):
        make_orchestrator(session).run(request_for())

        assignments = session.commands("az", "role", "assignment", "create")
        scopes = [args[args.index("--scope") + 1] for args in assignments]
        roles = [args[args.index("--role") + 1] for args in assignments]
        node_scope = "/subscriptions/sub-1/resourceGroups/MC_rg-demo_aks-demo_westus"
        assert scopes == [node_scope, node_scope, TRAFFIC_CONTROLLER_ID]
        assert roles == ["Reader", "Contributor", "fbc52c3f-28ad-4303-a892-8a056630b8f1"]
        for args in assignments:
            assert args[args.index("--assignee-object-id") + 1] == "principal-123"

    def test_gateway_annotated_with_alb_reference(self, session, make_orchestrator, request_for):
        make_orchestrator(session).run(request_for())

        assert session.commands("kubectl", "annotate") == [
            [
                "kubectl", "annotate", "gateway", "gateway-demo", "-n", "demo",
                "alb.networking.azure.io/alb-namespace=demo",
                "alb.networking.azure.io/alb-name=alb-demo",
                "--overwrite",
            ]
        ]

    def test_rerun_is_idempotent(self, session, make_orchestrator, request_for):
        orchestrator = make_orchestrator(session)

        first = orchestrator.run(request_for())
        second = orchestrator.run(request_for())

        assert first.exit_code == 0
        assert second.exit_code == 0
        assert len(session.commands("helm", "upgrade", "--install")) == 2

    def test_node_resource_group_falls_back_to_convention(self, session, make_orchestrator, request_for):
        session.on("az", "aks", "show", stderr="ResourceNotFound", exit_status=3)

        make_orchestrator(session).run(request_for())

        scope = session.commands("az", "role", "assignment", "create")[0]
        assert scope[scope.index("--scope") + 1].endswith("/resourceGroups/MC_rg-demo_aks-demo_westus")


class TestDeploymentOutputs:
    def test_falls_back_to_latest_deployment(self, session, make_orchestrator, request_for):
        session.on("az", "deployment", "group", "show", stdout="")
        session.on("az", "deployment", "group", "list", stdout=json.dumps(OUTPUTS))

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert session.commands("az", "deployment", "group", "list")
        credentials = session.commands("az", "aks", "get-credentials")[0]
        assert credentials[credentials.index("--name") + 1] == "aks-demo"

    def test_falls_back_when_named_deployment_missing(self, session, make_orchestrator, request_for):
        session.on("az", "deployment", "group", "show", stderr="DeploymentNotFound", exit_status=3)
        session.on("az", "deployment", "group", "list", stdout=json.dumps(OUTPUTS))

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0

    def test_named_deployment_used_without_fallback(self, session, make_orchestrator, request_for):
        make_orchestrator(session).run(request_for())

        assert session.commands("az", "deployment", "group", "list") == []

    def test_empty_cluster_name_is_fatal(self, session, make_orchestrator, request_for):
        session.on("az", "deployment", "group", "show", stdout="")
        session.on("az", "deployment", "group", "list", stdout="null")

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Deploy infrastructure template"
        assert session.commands("az", "aks", "get-credentials") == []
        assert step_statuses(report)["Deploy infrastructure template"] == StepStatus.FAILED


class TestFatalSteps:
    def test_resource_group_failure_stops_run(self, session, make_orchestrator, request_for):
        session.on("az", "group", "create", stderr="AuthorizationFailed", exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Ensure resource group"
        assert session.commands("az", "deployment") == []

    def test_template_failure_stops_run(self, session, make_orchestrator, request_for):
        session.on("az", "deployment", "group", "create", stderr="InvalidTemplate", exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Deploy infrastructure template"
        assert report.steps[-1].message == "InvalidTemplate"

    def test_credentials_failure_stops_run(self, session, make_orchestrator, request_for):
        session.on("az", "aks", "get-credentials", stderr="ResourceNotFound", exit_status=3)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Fetch cluster credentials"
        assert session.commands("helm") == []

    def test_manifest_without_placeholder_is_fatal(self, session, make_orchestrator, request_for, tmp_path):
        manifest = tmp_path / "static.yaml"
        manifest.write_text("apiVersion: v1\nkind: Namespace\nmetadata:\n  name: demo\n", encoding="utf-8")

        report = make_orchestrator(session).run(request_for(manifest_template=str(manifest)))

        assert report.exit_code == 1
        assert report.failed_step == "Apply workload manifests"
        assert session.commands("kubectl", "apply") == []

    def test_rejected_apply_is_fatal(self, session, make_orchestrator, request_for):
        session.on("kubectl", "apply", stderr="admission webhook denied", exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Apply workload manifests"
        assert session.commands(*ALB_GET) == []


class TestControllerInstallRetry:
    def test_fails_after_three_attempts(self, session, make_orchestrator, request_for, sleeper):
        session.on("helm", stderr="Error: failed to fetch chart", exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Install ALB Controller"
        assert len(session.commands("helm")) == 3
        assert sleeper.calls == [10, 10]

    def test_succeeds_on_third_attempt(self, session, make_orchestrator, request_for, sleeper):
        session.sequence(
            ("helm",),
            [("", "timeout", 1), ("", "timeout", 1), ("deployed", "", 0)],
        )

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert len(session.commands("helm")) == 3
        assert sleeper.calls[:2] == [10, 10]
        install = next(step for step in report.steps if step.name == "Install ALB Controller")
        assert install.message == "ALB Controller installed (attempt 3)"


class TestTrafficControllerPolling:
    def test_exits_as_soon_as_identifier_appears(self, session, make_orchestrator, request_for, sleeper):
        found = alb_status(f"alb-id={TRAFFIC_CONTROLLER_ID}")
        pending = alb_status(None)
        session.sequence(ALB_GET, [(pending, "", 0), (pending, "", 0), (found, "", 0)])

        report = make_orchestrator(session).run(request_for())

        assert report.traffic_controller_id == TRAFFIC_CONTROLLER_ID
        assert len(session.commands(*ALB_GET)) == 3
        assert sleeper.calls == [45, 20, 30, 30, 30, 60]

    def test_timeout_is_a_warning_after_final_check(self, session, make_orchestrator, request_for, sleeper):
        session.on(*ALB_GET, stdout=alb_status(None))

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert report.traffic_controller_id is None
        # 20 polls plus one final check
        assert len(session.commands(*ALB_GET)) == 21
        assert sleeper.calls == [45, 20] + [30] * 20
        statuses = step_statuses(report)
        assert statuses["Wait for traffic controller"] == StepStatus.WARNING
        assert statuses["Authorize traffic controller"] == StepStatus.SKIPPED
        assert statuses["Annotate gateway"] == StepStatus.SKIPPED
        assert statuses["Summarize"] == StepStatus.SUCCESS
        assert session.commands("kubectl", "annotate") == []

    def test_final_check_can_still_find_identifier(self, session, make_orchestrator, request_for):
        pending = (alb_status(None), "", 0)
        found = (alb_status(f"alb-id={TRAFFIC_CONTROLLER_ID}"), "", 0)
        session.sequence(ALB_GET, [pending] * 20 + [found])

        report = make_orchestrator(session).run(request_for())

        assert report.traffic_controller_id == TRAFFIC_CONTROLLER_ID
        assert step_statuses(report)["Wait for traffic controller"] == StepStatus.SUCCESS

    def test_missing_resource_counts_as_not_ready(self, session, make_orchestrator, request_for):
        session.on(*ALB_GET, stderr='applicationloadbalancers "alb-demo" not found', exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert report.traffic_controller_id is None

    def test_honours_configured_iterations(self, session, make_orchestrator, request_for):
        from alb_deployer.config import AppConfig

        config = AppConfig()
        config.polling.max_iterations = 2
        session.on(*ALB_GET, stdout=alb_status(None))

        make_orchestrator(session, config=config).run(request_for())

        assert len(session.commands(*ALB_GET)) == 3

    def test_cancel_event_interrupts_polling(self, session, make_orchestrator, request_for, tmp_path):
        cancel = threading.Event()
        cancel.set()
        orchestrator = make_orchestrator(session, cancel_event=cancel, log_dir=str(tmp_path))

        with pytest.raises(RetryCancelled):
            orchestrator.run(request_for())

        log = json.loads(next(tmp_path.glob("deploy_*.json")).read_text(encoding="utf-8"))
        assert log["status"] == "interrupted"


class TestNonFatalSteps:
    def test_existing_role_assignment_is_success(self, session, make_orchestrator, request_for):
        session.on(
            "az", "role", "assignment", "create",
            stderr="(RoleAssignmentExists) The role assignment already exists.",
            exit_status=1,
        )

        report = make_orchestrator(session).run(request_for())

        statuses = step_statuses(report)
        assert statuses["Grant node resource group roles"] == StepStatus.SUCCESS
        assert statuses["Authorize traffic controller"] == StepStatus.SUCCESS
        assert report.warnings == []

    def test_role_assignment_failure_is_warning(self, session, make_orchestrator, request_for):
        session.on("az", "role", "assignment", "create", stderr="AuthorizationFailed", exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        statuses = step_statuses(report)
        assert statuses["Grant node resource group roles"] == StepStatus.WARNING
        assert statuses["Authorize traffic controller"] == StepStatus.WARNING
        assert statuses["Annotate gateway"] == StepStatus.SUCCESS

    def test_missing_identity_skips_role_assignments(self, session, make_orchestrator, request_for):
        session.on("az", "identity", "show", stderr="ResourceNotFound", exit_status=3)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert session.commands("az", "role", "assignment", "create") == []
        assert step_statuses(report)["Authorize traffic controller"] == StepStatus.WARNING

    def test_annotation_failure_is_warning(self, session, make_orchestrator, request_for):
        session.on("kubectl", "annotate", stderr="Error from server (NotFound)", exit_status=1)

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert step_statuses(report)["Annotate gateway"] == StepStatus.WARNING

    def test_missing_gateway_address_is_warning(self, session, make_orchestrator, request_for):
        session.on("kubectl", "get", "gateway", "gateway-demo", stdout="")

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 0
        assert report.gateway_address is None
        assert step_statuses(report)["Summarize"] == StepStatus.WARNING


class TestRunLog:
    def test_log_records_steps_and_outcome(self, session, make_orchestrator, request_for, tmp_path):
        orchestrator = make_orchestrator(session, log_dir=str(tmp_path / "logs"))

        orchestrator.run(request_for())

        files = list((tmp_path / "logs").glob("deploy_*.json"))
        assert len(files) == 1
        log = json.loads(files[0].read_text(encoding="utf-8"))
        assert log["status"] == "success"
        assert log["resource_group"] == "rg-demo"
        assert log["traffic_controller_id"] == TRAFFIC_CONTROLLER_ID
        assert [step["status"] for step in log["steps"]] == ["success"] * 10

    def test_failed_run_is_logged_as_failed(self, session, make_orchestrator, request_for, tmp_path):
        session.on("az", "group", "create", stderr="denied", exit_status=1)
        orchestrator = make_orchestrator(session, log_dir=str(tmp_path))

        orchestrator.run(request_for())

        log = json.loads(next(tmp_path.glob("deploy_*.json")).read_text(encoding="utf-8"))
        assert log["status"] == "failed"
        assert log["steps"][-1]["name"] == "Ensure resource group"
        assert log["steps"][-1]["status"] == "failed"
        assert log["steps"][-1]["message"] == "denied"


class TestSummarize:
    def test_summary_is_read_only(self, session, make_orchestrator, request_for):
        report = make_orchestrator(session).summarize(request_for())

        assert report.exit_code == 0
        assert report.gateway_address == "20.1.2.3"
        assert session.commands("az") == []
        assert session.commands("helm") == []
        assert all(args[1] == "get" for args, _ in session.calls)


class TestSessionFailures:
    def test_dropped_session_fails_the_running_step(self, session, make_orchestrator, request_for, tmp_path):
        session.raises("helm", error=paramiko.SSHException("SSH session not active"))
        orchestrator = make_orchestrator(session, log_dir=str(tmp_path))

        report = orchestrator.run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Install ALB Controller"
        assert "SSH session not active" in report.steps[-1].message
        assert session.commands("kubectl", "apply") == []
        log = json.loads(next(tmp_path.glob("deploy_*.json")).read_text(encoding="utf-8"))
        assert log["status"] == "failed"
        assert log["steps"][-1]["status"] == "failed"

    def test_socket_error_in_non_fatal_step_stops_run(self, session, make_orchestrator, request_for):
        session.raises("az", "role", error=ConnectionResetError("Connection reset by peer"))

        report = make_orchestrator(session).run(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Grant node resource group roles"

    def test_summary_reports_session_failure(self, session, make_orchestrator, request_for, tmp_path):
        session.raises("kubectl", error=paramiko.SSHException("SSH session not active"))
        orchestrator = make_orchestrator(session, log_dir=str(tmp_path))

        report = orchestrator.summarize(request_for())

        assert report.exit_code == 1
        assert report.failed_step == "Summarize"
        log = json.loads(next(tmp_path.glob("status_*.json")).read_text(encoding="utf-8"))
        assert log["status"] == "failed"
