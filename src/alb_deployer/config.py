"""Configuration loading utilities for alb-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

# AppGw for Containers Configuration Manager
CONFIG_MANAGER_ROLE_ID = "fbc52c3f-28ad-4303-a892-8a056630b8f1"


@dataclass
class AzureConfig:
    """Resource group, ARM template and identity settings."""

    resource_group: str = "rg-aks-alb-managed-demo"
    location: str = "westus"
    template_file: str = "agc-aks-alb-managed-template.json"
    parameters_file: str = "agc-aks-alb-managed-parameters.json"
    deployment_name: Optional[str] = None  # defaults to the template file stem
    identity_name: str = "azure-alb-identity"
    node_group_roles: List[str] = field(default_factory=lambda: ["Reader", "Contributor"])
    config_manager_role: str = CONFIG_MANAGER_ROLE_ID

    def resolved_deployment_name(self) -> str:
        return self.deployment_name or Path(self.template_file).stem


@dataclass
class ControllerConfig:
    """ALB Controller Helm release settings."""

    release_name: str = "alb-controller"
    chart: str = "oci://mcr.microsoft.com/application-lb/charts/alb-controller"
    version: str = "1.8.12"
    namespace: str = "azure-alb-system"
    install_attempts: int = 3
    install_retry_delay: float = 10.0
    settle_seconds: float = 45.0


@dataclass
class WorkloadConfig:
    """Sample workload manifest and the resources it declares."""

    manifest_template: str = "deploy/sample-app-alb-managed.yaml"
    subnet_placeholder: str = "<SUBNET_ID>"
    namespace: str = "demo"
    alb_name: str = "alb-demo"
    gateway_name: str = "gateway-demo"
    settle_seconds: float = 20.0
    probe_endpoint: bool = True
    probe_timeout: float = 10.0


@dataclass
class PollingConfig:
    """Traffic Controller polling settings."""

    max_iterations: int = 20
    interval_seconds: float = 30.0
    condition_type: str = "Deployment"
    identifier_prefix: str = "alb-id="
    reconcile_seconds: float = 60.0


@dataclass
class RemoteConfig:
    """Optional jump host on which the CLIs are executed over SSH."""

    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    auth_method: Optional[str] = None
    password: Optional[str] = None
    key_path: Optional[str] = None
    key_passphrase: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level configuration."""

    azure: AzureConfig = field(default_factory=AzureConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    log_dir: str = ".alb-deployer/logs"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def section(name: str, defaults: Any) -> Any:
            values = payload.get(name, {}) or {}
            if not isinstance(values, dict):
                raise ValueError(f"Config section '{name}' must be an object")
            # Keys starting with an underscore are comments
            values = {k: v for k, v in values.items() if not k.startswith("_")}
            known = {f.name for f in fields(defaults)}
            unknown = sorted(set(values) - known)
            if unknown:
                raise ValueError(f"Unknown key(s) in config section '{name}': " + ", ".join(unknown))
            return type(defaults)(**{**defaults.__dict__, **values})

        return cls(
            azure=section("azure", AzureConfig()),
            controller=section("controller", ControllerConfig()),
            workload=section("workload", WorkloadConfig()),
            polling=section("polling", PollingConfig()),
            remote=section("remote", RemoteConfig()),
            log_dir=payload.get("log_dir") or cls.log_dir,
        )

    def validate(self) -> None:
        if not self.azure.resource_group:
            raise ValueError("azure.resource_group must not be empty")
        if self.controller.install_attempts < 1:
            raise ValueError("controller.install_attempts must be at least 1")
        if self.polling.max_iterations < 1:
            raise ValueError("polling.max_iterations must be at least 1")
        delays = {
            "controller.install_retry_delay": self.controller.install_retry_delay,
            "controller.settle_seconds": self.controller.settle_seconds,
            "workload.settle_seconds": self.workload.settle_seconds,
            "polling.interval_seconds": self.polling.interval_seconds,
            "polling.reconcile_seconds": self.polling.reconcile_seconds,
        }
        negative = [name for name, value in delays.items() if value < 0]
        if negative:
            raise ValueError("Delays must not be negative: " + ", ".join(negative))
        if not self.workload.subnet_placeholder:
            raise ValueError("workload.subnet_placeholder must not be empty")


def _apply_env_overrides(config: AppConfig) -> None:
    env_group = os.getenv("ALB_DEPLOYER_RESOURCE_GROUP")
    if env_group:
        config.azure.resource_group = env_group

    env_location = os.getenv("ALB_DEPLOYER_LOCATION")
    if env_location:
        config.azure.location = env_location

    env_host = os.getenv("ALB_DEPLOYER_SSH_HOST")
    if env_host:
        config.remote.host = env_host

    env_port = os.getenv("ALB_DEPLOYER_SSH_PORT")
    if env_port:
        config.remote.port = int(env_port)

    env_username = os.getenv("ALB_DEPLOYER_SSH_USERNAME")
    if env_username:
        config.remote.username = env_username

    env_password = os.getenv("ALB_DEPLOYER_SSH_PASSWORD")
    if env_password:
        config.remote.password = env_password
        config.remote.auth_method = "password"

    env_key_path = os.getenv("ALB_DEPLOYER_SSH_KEY_PATH")
    if env_key_path:
        config.remote.key_path = env_key_path
        config.remote.auth_method = "key"

    env_passphrase = os.getenv("ALB_DEPLOYER_SSH_KEY_PASSPHRASE")
    if env_passphrase:
        config.remote.key_passphrase = env_passphrase


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - ALB_DEPLOYER_RESOURCE_GROUP: Target resource group
    - ALB_DEPLOYER_LOCATION: Azure region
    - ALB_DEPLOYER_SSH_HOST: Jump host to run the CLIs on
    - ALB_DEPLOYER_SSH_PORT: SSH port
    - ALB_DEPLOYER_SSH_USERNAME: SSH username
    - ALB_DEPLOYER_SSH_PASSWORD: SSH password
    - ALB_DEPLOYER_SSH_KEY_PATH: Path to SSH private key
    - ALB_DEPLOYER_SSH_KEY_PASSPHRASE: Passphrase for the SSH private key
    """

    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate = Path(path) if path else _DEFAULT_CONFIG_PATH
    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    _apply_env_overrides(config)
    return config
