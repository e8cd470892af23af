"""Command-line interface for alb-deployer."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .config import AppConfig, load_config
from .local import LocalSession
from .orchestrator import DeploymentOrchestrator, DeploymentRequest, RetryCancelled
from .probe import ToolProbe
from .ssh import SESSION_ERRORS, SSHCredentials, SSHSession
from .tools import AzureCLI, Helm, Kubectl
from .utils.logging import get_logger, set_verbose

logger = get_logger(__name__)

EXIT_INTERRUPTED = 130


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    session: Union[LocalSession, SSHSession]

    @property
    def target(self) -> str:
        return self.session.target


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alb-deployer",
        description="Deploy AKS with an ALB-managed Application Gateway for Containers.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every CLI call")

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser(
        "deploy", help="Provision infrastructure, install the ALB Controller and the sample app"
    )
    deploy_parser.add_argument("--resource-group", "-g", help="Target resource group")
    deploy_parser.add_argument("--location", "-l", help="Azure region")
    deploy_parser.add_argument("--template-file", help="ARM template")
    deploy_parser.add_argument("--parameters-file", help="ARM parameters file")
    deploy_parser.add_argument(
        "--deployment-name", help="ARM deployment name (default: template file stem)"
    )
    deploy_parser.add_argument("--manifest", help="Workload manifest template")
    deploy_parser.add_argument(
        "--skip-preflight", action="store_true",
        help="Do not check that az, helm and kubectl are available first",
    )
    _add_remote_arguments(deploy_parser)

    status_parser = subparsers.add_parser(
        "status", help="Show Gateway, ApplicationLoadBalancer and pod status"
    )
    status_parser.add_argument("--resource-group", "-g", help="Target resource group")
    _add_remote_arguments(status_parser)

    check_parser = subparsers.add_parser(
        "check", help="Check that az, helm and kubectl are installed and signed in"
    )
    _add_remote_arguments(check_parser)

    logs_parser = subparsers.add_parser("logs", help="View deployment run logs")
    logs_parser.add_argument(
        "--list", "-L", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )
    logs_parser.add_argument(
        "--summary", "-s", action="store_true",
        help="Show the header only, without steps"
    )

    return parser


def _add_remote_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", help="Run the CLIs on this jump host over SSH")
    parser.add_argument("--port", type=int, default=None, help="SSH port")
    parser.add_argument("--user", help="SSH username")
    parser.add_argument(
        "--auth-method",
        choices=["password", "key"],
        help="SSH authentication method",
    )
    parser.add_argument("--password", help="SSH password", default=None)
    parser.add_argument("--key-path", help="Path to SSH private key", default=None)
    parser.add_argument("--key-passphrase", help="Passphrase for the SSH private key", default=None)


def _create_session(args: argparse.Namespace, config: AppConfig) -> Union[LocalSession, SSHSession]:
    remote = config.remote
    host = getattr(args, "host", None) or remote.host
    if not host:
        return LocalSession()

    port = getattr(args, "port", None) or remote.port
    username = getattr(args, "user", None) or remote.username
    auth_method = getattr(args, "auth_method", None) or remote.auth_method
    password = args.password if getattr(args, "password", None) is not None else remote.password
    key_path = args.key_path if getattr(args, "key_path", None) is not None else remote.key_path
    passphrase = getattr(args, "key_passphrase", None) or remote.key_passphrase
    missing = []
    if not username:
        missing.append("user")
    if not auth_method:
        missing.append("auth-method")
    if auth_method == "password" and not password:
        missing.append("password")
    if auth_method == "key" and not key_path:
        missing.append("key-path")
    if missing:
        raise ValueError("Missing SSH connection values: " + ", ".join(missing))
    assert username is not None
    assert auth_method is not None
    credentials = SSHCredentials(
        host=host,
        port=port,
        username=username,
        auth_method=auth_method,
        password=password,
        key_path=key_path,
        passphrase=passphrase,
    )
    return SSHSession(credentials)


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    azure = config.azure
    if getattr(args, "resource_group", None):
        azure.resource_group = args.resource_group
    if getattr(args, "location", None):
        azure.location = args.location
    if getattr(args, "template_file", None):
        azure.template_file = args.template_file
    if getattr(args, "parameters_file", None):
        azure.parameters_file = args.parameters_file
    if getattr(args, "deployment_name", None):
        azure.deployment_name = args.deployment_name
    if getattr(args, "manifest", None):
        config.workload.manifest_template = args.manifest
    config.validate()
    return CLIContext(config=config, session=_create_session(args, config))


def _build_request(context: CLIContext) -> DeploymentRequest:
    azure = context.config.azure
    return DeploymentRequest(
        resource_group=azure.resource_group,
        location=azure.location,
        template_file=azure.template_file,
        parameters_file=azure.parameters_file,
        deployment_name=azure.resolved_deployment_name(),
        manifest_template=context.config.workload.manifest_template,
        target=context.target,
    )


def _build_orchestrator(context: CLIContext) -> DeploymentOrchestrator:
    session = context.session
    return DeploymentOrchestrator(
        config=context.config,
        azure=AzureCLI(session),
        helm=Helm(session),
        kubectl=Kubectl(session),
        log_dir=context.config.log_dir,
    )


def _preflight(context: CLIContext) -> List[str]:
    session = context.session
    facts = ToolProbe().collect(AzureCLI(session), Helm(session), Kubectl(session))
    if facts.subscription:
        logger.info("Subscription: %s", facts.subscription)
    return facts.missing()


def handle_deploy_command(context: CLIContext, skip_preflight: bool = False) -> int:
    if not skip_preflight:
        problems = _preflight(context)
        if problems:
            for problem in problems:
                logger.error("❌ Pre-flight: %s", problem)
            return 1

    report = _build_orchestrator(context).run(_build_request(context))
    if report.failed_step:
        logger.error("Deployment stopped at step: %s", report.failed_step)
    elif report.warnings:
        logger.warning("Deployment finished with %d warning(s):", len(report.warnings))
        for step in report.warnings:
            logger.warning("  • %s: %s", step.name, step.message)
    else:
        logger.info("🎉 Deployment complete")
    return report.exit_code


def handle_status_command(context: CLIContext) -> int:
    report = _build_orchestrator(context).summarize(_build_request(context))
    return report.exit_code


def handle_check_command(context: CLIContext) -> int:
    session = context.session
    facts = ToolProbe().collect(AzureCLI(session), Helm(session), Kubectl(session))
    print(f"Target: {context.target}")
    print(json.dumps(facts.to_payload(), indent=2))
    problems = facts.missing()
    for problem in problems:
        print(f"❌ {problem}")
    if not problems:
        print("✅ Ready to deploy")
    return 1 if problems else 0


def handle_logs_command(args: argparse.Namespace, log_dir: Path) -> int:
    """Handle the logs subcommand."""
    if not log_dir.exists():
        print("📁 No run logs found. Run a deployment first.")
        return 0

    log_files = sorted(log_dir.glob("*_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)

    if not log_files:
        print("📁 No run logs found.")
        return 0

    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<14} {'Resource group':<30} {'Time':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                print(f"{i:<4} ❓ {'error':<12} {'?':<30} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            group = data.get("resource_group", "")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            print(f"{i:<4} {_status_emoji(status)} {status:<12} {group:<30} {start_time:<20} {log_file.name}")
        return 0

    target_file = log_files[0]
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1

    show_log_file(target_file, summary_only=args.summary)
    return 0


def _status_emoji(status: str) -> str:
    return {
        "success": "✅",
        "partial": "⚠️",
        "warning": "⚠️",
        "failed": "❌",
        "running": "🔄",
        "interrupted": "⏹️",
        "skipped": "⏭️",
    }.get(status, "❓")


def show_log_file(log_file: Path, summary_only: bool = False) -> None:
    """Display a run log file."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    steps = data.get("steps", [])

    print(f"\n{'='*60}")
    print(f"📄 Run Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"📦 Resource group: {data.get('resource_group', 'N/A')} ({data.get('location', 'N/A')})")
    print(f"🖥️  Target:         {data.get('target', 'N/A')}")
    print(f"⏰ Started:        {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:          {data.get('end_time', 'N/A')}")
    print(f"{_status_emoji(status)} Status:         {status}")
    if data.get("traffic_controller_id"):
        print(f"🔗 Traffic ctrl:   {data['traffic_controller_id']}")
    if data.get("gateway_address"):
        print(f"🌐 URL:            http://{data['gateway_address']}")
    print(f"📊 Steps:          {len(steps)}")
    print(f"{'='*60}\n")

    if not summary_only:
        for i, step in enumerate(steps, 1):
            step_status = step.get("status", "?")
            print(f"[{i}] {_status_emoji(step_status)} {step.get('name', '?')}")
            if step.get("message"):
                print(f"    📝 {step['message']}")
        print()

    print(f"{'='*60}")
    print(f"📄 Full log: {log_file}")
    print(f"{'='*60}\n")


def dispatch_command(args: argparse.Namespace) -> int:
    set_verbose(args.verbose)

    if args.command == "logs":
        config = load_config(args.config)
        return handle_logs_command(args, Path(config.log_dir))

    context = _build_context(args)
    with context.session:
        if args.command == "deploy":
            return handle_deploy_command(context, skip_preflight=args.skip_preflight)
        if args.command == "status":
            return handle_status_command(context)
        if args.command == "check":
            return handle_check_command(context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("❌ %s", exc)
        return 1
    except SESSION_ERRORS as exc:
        logger.error("❌ SSH session failed: %s", exc)
        return 1
    except (KeyboardInterrupt, RetryCancelled):
        logger.warning("⏹️  Interrupted. Every step is safe to repeat; re-run to continue.")
        return EXIT_INTERRUPTED
