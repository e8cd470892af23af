"""Wrapper around the `kubectl` CLI."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .base import CLITool


class Kubectl(CLITool):
    binary = "kubectl"

    def client_version(self) -> Dict[str, Any]:
        return self._run_json(["version", "--client", "--output", "json"]) or {}

    def apply(self, document: str) -> str:
        return self._run(["apply", "-f", "-"], input_text=document)

    def get_json(self, kind: str, name: str, namespace: str) -> Dict[str, Any]:
        return self._run_json(["get", kind, name, "-n", namespace, "-o", "json"]) or {}

    def get_table(self, kind: str, namespace: Optional[str] = None) -> str:
        args = ["get", kind]
        if namespace:
            args += ["-n", namespace]
        return self._run(args)

    def jsonpath(self, kind: str, name: str, namespace: str, expression: str) -> str:
        return self._run_tsv(["get", kind, name, "-n", namespace, "-o", f"jsonpath={expression}"])

    def annotate(self, kind: str, name: str, namespace: str, annotations: Dict[str, str]) -> None:
        pairs = [f"{key}={value}" for key, value in annotations.items()]
        self._run(["annotate", kind, name, "-n", namespace, *pairs, "--overwrite"])
