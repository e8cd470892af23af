"""Workload manifest templating and validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml


class ManifestError(RuntimeError):
    """Raised when a manifest cannot be rendered or parsed."""


def render_manifest(template: str, token: str, value: str) -> str:
    """Replace every occurrence of `token` with `value`."""
    if not value:
        raise ManifestError(f"No value to substitute for {token}")
    if token not in template:
        raise ManifestError(f"Placeholder {token} not found in manifest template")
    return template.replace(token, value)


def load_manifest(path: str, token: str, value: str) -> str:
    template_path = Path(path)
    if not template_path.is_file():
        raise ManifestError(f"Manifest template not found: {path}")
    return render_manifest(template_path.read_text(encoding="utf-8"), token, value)


def validate_manifest(text: str) -> List[Dict[str, Any]]:
    """Parse every YAML document; each non-empty one must declare a kind."""
    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise ManifestError(f"Manifest is not valid YAML: {exc}") from exc
    if not documents:
        raise ManifestError("Manifest contains no documents")
    for index, doc in enumerate(documents):
        if not isinstance(doc, dict) or not doc.get("kind"):
            raise ManifestError(f"Manifest document #{index + 1} has no kind")
    return documents
