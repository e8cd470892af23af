"""Wrapper around the `helm` CLI."""

from __future__ import annotations

from typing import Dict

from .base import CLITool


class Helm(CLITool):
    binary = "helm"

    def version(self) -> str:
        return self._run_tsv(["version", "--short"])

    def upgrade_install(
        self,
        release: str,
        chart: str,
        version: str,
        namespace: str,
        values: Dict[str, str],
    ) -> None:
        """Install or upgrade `release`; re-running against an existing release is a no-op upgrade."""
        args = [
            "upgrade", "--install", release, chart,
            "--version", version,
            "--namespace", namespace,
            "--create-namespace",
        ]
        for key, value in values.items():
            args += ["--set", f"{key}={value}"]
        self._run(args)
