"""Schema definitions for VNF dictionaries.

A dictionary describes, for one vendor product, how each abstract
operation becomes a wire request and how the response is interpreted.
Instances are frozen: a new dictionary version is a new object.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class AuthType(str, Enum):
    """How requests authenticate against the appliance."""
    NONE = "none"
    BASIC = "basic"
    TOKEN = "token"
    SSH_KEY = "ssh-key"
    SSH_PASSWORD = "ssh-password"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "AuthType":
        """Accept ``ssh_key``, ``SSH-KEY`` and friends."""
        if value is None or value == "":
            return cls.NONE
        normalized = str(value).strip().lower().replace("_", "-")
        return cls(normalized)


class OperationKind(str, Enum):
    """Abstract operations a service can expose."""
    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"
    LIST = "list"


# Well-known service names
SERVICE_FIREWALL = "Firewall"
SERVICE_NAT = "NAT"
SERVICE_LOAD_BALANCER = "LoadBalancer"

ALLOWED_PROTOCOLS = ("https", "http", "ssh")
HTTP_PROTOCOLS = ("https", "http")
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")
SSH_METHOD = "SSH"

DEFAULT_PORTS = {
    "https": 443,
    "http": 80,
    "ssh": 22,
}


@dataclass(frozen=True)
class AccessConfig:
    """How to reach and authenticate against the appliance."""
    protocol: str
    port: int
    base_path: str = ""
    auth_type: AuthType = AuthType.NONE
    token_ref: Optional[str] = None
    token_header: str = "Authorization"
    username_ref: Optional[str] = None
    password_ref: Optional[str] = None
    key_ref: Optional[str] = None

    @property
    def is_http(self) -> bool:
        return self.protocol in HTTP_PROTOCOLS


@dataclass(frozen=True)
class ResponseMapping:
    """How to interpret a response for one operation."""
    success_code: int = 200
    id_path: Optional[str] = None
    list_path: Optional[str] = None
    item_paths: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OperationDefinition:
    """Request template for one operation (create, delete, list, ...)."""
    name: str
    method: str
    endpoint: str
    body: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    response_mapping: ResponseMapping = field(default_factory=ResponseMapping)
    success_pattern: Optional[str] = None

    @property
    def is_ssh(self) -> bool:
        return self.method.upper() == SSH_METHOD


@dataclass(frozen=True)
class ServiceDefinition:
    """A service (Firewall, NAT, ...) and its operations."""
    name: str
    operations: dict[str, OperationDefinition] = field(default_factory=dict)

    def get_operation(self, name: str) -> Optional[OperationDefinition]:
        return self.operations.get(name)

    def has_operation(self, name: str) -> bool:
        return name in self.operations


@dataclass(frozen=True)
class Dictionary:
    """Parsed vendor dictionary."""
    id: str
    version: str
    access: AccessConfig
    services: dict[str, ServiceDefinition] = field(default_factory=dict)
    vendor: str = ""
    product: str = ""
    name: str = ""
    source: str = field(default="", repr=False, compare=False)

    def get_service(self, name: str) -> Optional[ServiceDefinition]:
        return self.services.get(name)

    def get_operation(
        self,
        service_name: str,
        operation_name: str
    ) -> Optional[OperationDefinition]:
        service = self.services.get(service_name)
        return service.get_operation(operation_name) if service else None

    def find_operation(self, operation_name: str) -> Optional[OperationDefinition]:
        """First operation with this name across services (declaration order)."""
        for service in self.services.values():
            operation = service.get_operation(operation_name)
            if operation:
                return operation
        return None

    def services_with(self, operation_name: str) -> list[str]:
        """Names of services that define ``operation_name``."""
        return [
            name for name, service in self.services.items()
            if service.has_operation(operation_name)
        ]

    def summary(self) -> dict[str, Any]:
        """Short description for listings and tool output."""
        return {
            "id": self.id,
            "version": self.version,
            "vendor": self.vendor,
            "product": self.product,
            "protocol": self.access.protocol,
            "port": self.access.port,
            "services": {
                name: sorted(service.operations)
                for name, service in self.services.items()
            },
        }


# --- Validation Results ---

@dataclass
class ValidationResult:
    """Result of dictionary validation. Never raised."""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    services_found: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True iff no errors were recorded. Warnings don't count."""
        return len(self.errors) == 0

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "services_found": self.services_found,
        }
