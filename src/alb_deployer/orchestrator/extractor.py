"""Traffic Controller identifier extraction from ApplicationLoadBalancer status.

The ALB Controller reports the Azure resource id of the Traffic Controller it
created only inside the free-text message of a status condition, e.g.::

    Valid Application Gateway for Containers resource alb-id=/subscriptions/...

The message format belongs to the controller, so the matching strategy sits
behind `IdentifierExtractor` and the orchestrator only ever sees an id or None.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Condition:
    type: str
    message: str = ""
    status: str = ""
    reason: str = ""


@dataclass
class StatusDocument:
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, resource: Optional[Dict[str, Any]]) -> "StatusDocument":
        """Parse `status.conditions` of a Kubernetes object, skipping malformed entries."""
        status = (resource or {}).get("status") or {}
        conditions = []
        for entry in status.get("conditions") or []:
            if not isinstance(entry, dict) or not entry.get("type"):
                continue
            conditions.append(
                Condition(
                    type=str(entry["type"]),
                    message=str(entry.get("message") or ""),
                    status=str(entry.get("status") or ""),
                    reason=str(entry.get("reason") or ""),
                )
            )
        return cls(conditions=conditions)

    def find(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class IdentifierExtractor(ABC):
    @abstractmethod
    def extract(self, document: StatusDocument) -> Optional[str]:
        """Return the identifier, or None when it is not available yet."""


class PrefixIdentifierExtractor(IdentifierExtractor):
    """Takes the whitespace-delimited token following `prefix` in one condition's message."""

    def __init__(self, condition_type: str = "Deployment", prefix: str = "alb-id=") -> None:
        self.condition_type = condition_type
        self.prefix = prefix
        self._pattern = re.compile(re.escape(prefix) + r"(\S+)")

    def extract(self, document: StatusDocument) -> Optional[str]:
        condition = document.find(self.condition_type)
        if condition is None:
            return None
        match = self._pattern.search(condition.message)
        if not match:
            return None
        return match.group(1)
