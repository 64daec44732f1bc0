"""Appliance model and lifecycle."""
from .models import (
    Appliance,
    ApplianceState,
    BrokerType,
    ConnectivityResult,
    HealthStatus,
)

__all__ = [
    "Appliance",
    "ApplianceState",
    "BrokerType",
    "ConnectivityResult",
    "HealthStatus",
]
