"""Wrapper around the `az` CLI."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .base import CLITool


def flatten_outputs(outputs: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Turn ARM outputs ({name: {type, value}}) into {name: value}."""
    flattened: Dict[str, str] = {}
    for name, entry in (outputs or {}).items():
        value = entry.get("value") if isinstance(entry, dict) else entry
        flattened[name] = "" if value is None else str(value)
    return flattened


class AzureCLI(CLITool):
    """Resource group, ARM deployment, AKS and RBAC operations."""

    binary = "az"

    def version(self) -> Dict[str, Any]:
        return self._run_json(["version", "--output", "json"]) or {}

    def account(self) -> Dict[str, Any]:
        return self._run_json(["account", "show", "--output", "json"]) or {}

    def subscription_id(self) -> str:
        return self._run_tsv(["account", "show", "--query", "id", "--output", "tsv"])

    def create_group(self, name: str, location: str) -> None:
        self._run(["group", "create", "--name", name, "--location", location, "--output", "none"])

    def create_deployment(
        self,
        resource_group: str,
        name: str,
        template_file: str,
        parameters_file: str,
    ) -> None:
        self._run(
            [
                "deployment", "group", "create",
                "--resource-group", resource_group,
                "--name", name,
                "--template-file", template_file,
                "--parameters", f"@{parameters_file}",
                "--output", "none",
            ]
        )

    def deployment_outputs(self, resource_group: str, name: str) -> Dict[str, str]:
        outputs = self._run_json(
            [
                "deployment", "group", "show",
                "--resource-group", resource_group,
                "--name", name,
                "--query", "properties.outputs",
                "--output", "json",
            ]
        )
        return flatten_outputs(outputs)

    def latest_deployment_outputs(self, resource_group: str) -> Dict[str, str]:
        outputs = self._run_json(
            [
                "deployment", "group", "list",
                "--resource-group", resource_group,
                "--query", "sort_by([], &properties.timestamp)[-1].properties.outputs",
                "--output", "json",
            ]
        )
        return flatten_outputs(outputs)

    def get_credentials(self, resource_group: str, cluster_name: str) -> None:
        self._run(
            [
                "aks", "get-credentials",
                "--resource-group", resource_group,
                "--name", cluster_name,
                "--overwrite-existing",
            ]
        )

    def node_resource_group(self, resource_group: str, cluster_name: str) -> str:
        return self._run_tsv(
            [
                "aks", "show",
                "--resource-group", resource_group,
                "--name", cluster_name,
                "--query", "nodeResourceGroup",
                "--output", "tsv",
            ]
        )

    def identity_principal_id(self, resource_group: str, identity_name: str) -> str:
        return self._run_tsv(
            [
                "identity", "show",
                "--resource-group", resource_group,
                "--name", identity_name,
                "--query", "principalId",
                "--output", "tsv",
            ]
        )

    def create_role_assignment(self, principal_id: str, role: str, scope: str) -> None:
        self._run(
            [
                "role", "assignment", "create",
                "--assignee-object-id", principal_id,
                "--assignee-principal-type", "ServicePrincipal",
                "--role", role,
                "--scope", scope,
                "--output", "none",
            ]
        )
