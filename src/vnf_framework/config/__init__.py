"""Configuration: engine settings, secret references and the inventory."""
from .settings import EngineSettings
from .secrets import SecretResolver, normalize_secret_ref
from .inventory import ApplianceInventory

__all__ = ["EngineSettings", "SecretResolver", "normalize_secret_ref", "ApplianceInventory"]
