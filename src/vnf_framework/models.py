"""Data models shared by the builder, broker, parser and reconciler.

Defines the platform-facing rule types, the wire request/response pair and
all result dataclasses.
"""
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional


# --- Domain Rules (platform input) ---

def _port_range(start: Optional[int], end: Optional[int]) -> str:
    if start is None:
        return ""
    if end is None or end == start:
        return str(start)
    return f"{start}-{end}"


@dataclass(frozen=True)
class DomainRule:
    """Common fields of every platform rule."""
    id: str
    protocol: str = "tcp"
    source_cidrs: list[str] = field(default_factory=list)
    external_id: Optional[str] = None

    service_name: ClassVar[str] = ""

    def variables(self) -> dict[str, Any]:
        """Template variables exposed to dictionary templates."""
        return {
            "ruleId": self.id,
            "protocol": self.protocol,
            "sourceCidr": self.source_cidrs[0] if self.source_cidrs else "",
            "sourceCidrs": ",".join(self.source_cidrs),
            "sourceCidrsJson": json.dumps(self.source_cidrs),
            "externalId": self.external_id,
        }

    def with_external_id(self, external_id: Optional[str]) -> "DomainRule":
        return replace(self, external_id=external_id)


@dataclass(frozen=True)
class FirewallRule(DomainRule):
    """Firewall (ingress/egress ACL) rule."""
    destination_cidrs: list[str] = field(default_factory=list)
    start_port: Optional[int] = None
    end_port: Optional[int] = None
    icmp_type: Optional[int] = None
    icmp_code: Optional[int] = None
    traffic_type: str = "ingress"
    public_ip: Optional[str] = None

    service_name: ClassVar[str] = "Firewall"

    def variables(self) -> dict[str, Any]:
        variables = super().variables()
        variables.update({
            "destCidr": self.destination_cidrs[0] if self.destination_cidrs else "",
            "destCidrs": ",".join(self.destination_cidrs),
            "startPort": self.start_port,
            "endPort": self.end_port if self.end_port is not None else self.start_port,
            "port": self.start_port,
            "portRange": _port_range(self.start_port, self.end_port),
            "icmpType": self.icmp_type,
            "icmpCode": self.icmp_code,
            "trafficType": self.traffic_type,
            "publicIp": self.public_ip,
        })
        return variables


@dataclass(frozen=True)
class PortForwardingRule(DomainRule):
    """NAT port forwarding rule."""
    public_ip: str = ""
    public_start_port: Optional[int] = None
    public_end_port: Optional[int] = None
    private_ip: str = ""
    private_start_port: Optional[int] = None
    private_end_port: Optional[int] = None

    service_name: ClassVar[str] = "NAT"

    def variables(self) -> dict[str, Any]:
        variables = super().variables()
        public_end = self.public_end_port if self.public_end_port is not None else self.public_start_port
        private_end = self.private_end_port if self.private_end_port is not None else self.private_start_port
        variables.update({
            "publicIp": self.public_ip,
            "publicPort": self.public_start_port,
            "publicEndPort": public_end,
            "publicPortRange": _port_range(self.public_start_port, self.public_end_port),
            "privateIp": self.private_ip,
            "privatePort": self.private_start_port,
            "privateEndPort": private_end,
            "privatePortRange": _port_range(self.private_start_port, self.private_end_port),
            "port": self.public_start_port,
        })
        return variables


@dataclass(frozen=True)
class LoadBalancerRule(DomainRule):
    """Load balancer rule with its backend members."""
    name: str = ""
    algorithm: str = "roundrobin"
    public_ip: str = ""
    public_port: Optional[int] = None
    private_port: Optional[int] = None
    backends: list[str] = field(default_factory=list)

    service_name: ClassVar[str] = "LoadBalancer"

    def variables(self) -> dict[str, Any]:
        variables = super().variables()
        variables.update({
            "name": self.name or self.id,
            "algorithm": self.algorithm,
            "publicIp": self.public_ip,
            "publicPort": self.public_port,
            "privatePort": self.private_port,
            "port": self.public_port,
            "backends": ",".join(self.backends),
            "backendsJson": json.dumps(self.backends),
        })
        return variables


RULE_TYPES: dict[str, type[DomainRule]] = {
    FirewallRule.service_name: FirewallRule,
    PortForwardingRule.service_name: PortForwardingRule,
    LoadBalancerRule.service_name: LoadBalancerRule,
}


def rule_from_dict(service_name: str, data: dict[str, Any]) -> DomainRule:
    """Build a rule of the right type for ``service_name`` from plain data."""
    rule_class = RULE_TYPES.get(service_name, FirewallRule)
    values = dict(data)
    if "id" not in values:
        raise ValueError(f"{service_name} rule is missing 'id'")
    values["id"] = str(values["id"])
    for key in ("source_cidrs", "destination_cidrs", "backends"):
        if isinstance(values.get(key), str):
            values[key] = [values[key]]
    if values.get("external_id") is not None:
        values["external_id"] = str(values["external_id"])
    return rule_class(**values)


# --- Broker authorization ---

@dataclass(frozen=True)
class ScopedToken:
    """Short-lived authorization token bound to one target and operation."""
    value: str = field(repr=False)
    target_address: str
    operation: str
    expires_at: datetime

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


@dataclass(frozen=True)
class Credentials:
    """Resolved transport credentials. Never logged."""
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    private_key: Optional[str] = field(default=None, repr=False)


# --- Wire Request/Response ---

@dataclass(frozen=True)
class Request:
    """A transport-ready request for one appliance."""
    target_address: str
    protocol: str
    port: int
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    timeout: float = 30.0
    token: Optional[ScopedToken] = None
    service: str = ""
    operation: str = ""
    credentials: Optional[Credentials] = field(default=None, repr=False)

    @property
    def operation_scope(self) -> str:
        """Operation name the token is scoped for, e.g. ``Firewall.create``."""
        return f"{self.service}.{self.operation}" if self.service else self.operation

    def describe(self) -> str:
        """One-line description safe for logs."""
        return f"{self.method} {self.protocol}://{self.target_address}:{self.port}{self.path}"

    def to_dict(self) -> dict:
        """Preview form; header values that carry credentials are masked."""
        masked = {
            k: ("***" if k.lower() in ("authorization", "x-api-key", "x-auth-token") else v)
            for k, v in self.headers.items()
        }
        return {
            "target_address": self.target_address,
            "protocol": self.protocol,
            "port": self.port,
            "method": self.method,
            "path": self.path,
            "headers": masked,
            "body": self.body,
            "timeout": self.timeout,
            "service": self.service,
            "operation": self.operation,
            "token_scope": self.token.operation if self.token else None,
        }


@dataclass(frozen=True)
class Response:
    """Outcome of one request attempt."""
    status_code: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0
    success: bool = False
    error_message: Optional[str] = None


# --- Device State ---

@dataclass(frozen=True)
class DeviceRule:
    """A rule as reported by the appliance's list operation."""
    external_id: str
    service_name: str = ""
    properties: dict[str, Any] = field(default_factory=dict)


# --- Platform Outcomes ---

@dataclass
class OperationOutcome:
    """Result of a create/delete issued on behalf of the platform."""
    success: bool
    service: str
    operation: str
    rule_id: str
    external_id: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 1

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "service": self.service,
            "operation": self.operation,
            "rule_id": self.rule_id,
            "external_id": self.external_id,
            "status_code": self.status_code,
            "error": self.error,
            "attempts": self.attempts,
        }


# --- Reconciliation Results ---

class ActionType(str, Enum):
    """What reconciliation did for one rule."""
    REAPPLIED = "reapplied"
    REMOVED = "removed"
    FLAGGED = "flagged"
    NO_ACTION = "no_action"


@dataclass
class ReconciliationAction:
    """A single entry in the reconciliation action log."""
    service: str
    action_type: ActionType
    rule_ref: str
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "service": self.service,
            "action": self.action_type.value,
            "rule": self.rule_ref,
            "description": self.description,
        }


@dataclass
class ReconciliationResult:
    """Outcome of a reconciliation pass for one network."""
    network_id: str = ""
    appliance_id: Optional[str] = None
    dry_run: bool = False
    success: bool = False
    drift_detected: bool = False
    rules_checked: int = 0
    missing_rules: int = 0
    extra_rules: int = 0
    rules_reapplied: int = 0
    rules_removed: int = 0
    actions: list[ReconciliationAction] = field(default_factory=list)
    services_checked: list[str] = field(default_factory=list)
    services_skipped: list[str] = field(default_factory=list)
    reapplied_ids: dict[str, str] = field(default_factory=dict)
    error_message: Optional[str] = None

    def add_action(
        self,
        service: str,
        action_type: ActionType,
        rule_ref: str,
        description: str = ""
    ) -> None:
        self.actions.append(
            ReconciliationAction(service, action_type, rule_ref, description)
        )

    def actions_of(self, action_type: ActionType) -> list[ReconciliationAction]:
        return [a for a in self.actions if a.action_type == action_type]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "network_id": self.network_id,
            "appliance_id": self.appliance_id,
            "dry_run": self.dry_run,
            "success": self.success,
            "drift_detected": self.drift_detected,
            "rules_checked": self.rules_checked,
            "missing_rules": self.missing_rules,
            "extra_rules": self.extra_rules,
            "rules_reapplied": self.rules_reapplied,
            "rules_removed": self.rules_removed,
            "actions": [a.to_dict() for a in self.actions],
            "services_checked": self.services_checked,
            "services_skipped": self.services_skipped,
            "reapplied_ids": self.reapplied_ids,
            "error": self.error_message,
        }
