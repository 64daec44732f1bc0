"""VNF appliance model and lifecycle."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..errors import ApplianceStateError

logger = logging.getLogger(__name__)


class ApplianceState(str, Enum):
    """Lifecycle state of an appliance."""
    DEPLOYING = "deploying"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    DESTROYED = "destroyed"


class HealthStatus(str, Enum):
    """Health as seen by reachability checks."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class BrokerType(str, Enum):
    """How requests reach the appliance."""
    VIRTUAL_ROUTER = "virtual_router"
    DIRECT = "direct"
    EXTERNAL_CONTROLLER = "external_controller"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "BrokerType":
        if not value:
            return cls.DIRECT
        return cls(str(value).strip().lower().replace("-", "_"))


@dataclass
class Appliance:
    """A deployed VNF appliance serving exactly one network."""
    id: str
    network_id: str
    dictionary_id: str
    management_ip: str
    guest_ip: Optional[str] = None
    public_ip: Optional[str] = None
    name: str = ""
    uuid: str = ""
    broker_type: BrokerType = BrokerType.DIRECT
    state: ApplianceState = ApplianceState.DEPLOYING
    health: HealthStatus = HealthStatus.UNKNOWN
    last_contact: Optional[datetime] = None
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_destroyed(self) -> bool:
        return self.state == ApplianceState.DESTROYED

    def _require_not_destroyed(self, action: str) -> None:
        if self.is_destroyed:
            raise ApplianceStateError(
                f"Appliance {self.id} is destroyed; cannot {action}"
            )

    def record_contact(self) -> None:
        """Successful contact: deploying becomes running, health becomes healthy."""
        self._require_not_destroyed("record contact")
        self.last_contact = datetime.now(timezone.utc)
        if self.state == ApplianceState.DEPLOYING:
            logger.info(f"Appliance {self.id} reachable, now running")
            self.state = ApplianceState.RUNNING
        if self.health != HealthStatus.HEALTHY:
            logger.info(f"Appliance {self.id} health: {self.health.value} -> healthy")
        self.health = HealthStatus.HEALTHY

    def record_unreachable(self) -> None:
        """Failed reachability check."""
        self._require_not_destroyed("record unreachable")
        if self.health != HealthStatus.UNHEALTHY:
            logger.warning(f"Appliance {self.id} health: {self.health.value} -> unhealthy")
        self.health = HealthStatus.UNHEALTHY

    def transition(self, new_state: ApplianceState) -> None:
        """Move to ``new_state``. Destroyed is terminal."""
        if self.state == new_state:
            return
        self._require_not_destroyed(f"transition to {new_state.value}")
        logger.info(f"Appliance {self.id} state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def destroy(self) -> None:
        self.transition(ApplianceState.DESTROYED)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "uuid": self.uuid,
            "name": self.name,
            "network_id": self.network_id,
            "dictionary_id": self.dictionary_id,
            "management_ip": self.management_ip,
            "guest_ip": self.guest_ip,
            "public_ip": self.public_ip,
            "broker_type": self.broker_type.value,
            "state": self.state.value,
            "health": self.health.value,
            "last_contact": self.last_contact.isoformat() if self.last_contact else None,
        }


@dataclass
class ConnectivityResult:
    """Outcome of a connectivity test against an appliance."""
    reachable: bool
    latency_ms: float = 0.0
    method: str = ""
    response_code: Optional[int] = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "reachable": self.reachable,
            "latency_ms": round(self.latency_ms, 2),
            "method": self.method,
            "response_code": self.response_code,
            "message": self.message,
        }
