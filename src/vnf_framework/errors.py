"""Error taxonomy for the VNF framework.

Parse and build errors are configuration defects and are never retried.
Communication errors carry a ``retriable`` flag so callers pick the policy.
"""
from typing import Optional


class VnfError(Exception):
    """Base class for all framework errors."""
    pass


class ParseError(VnfError):
    """Malformed or incomplete dictionary document.

    Carries every detected problem, not just the first one.
    """

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.message = message
        self.errors = list(errors) if errors else [message]
        super().__init__(message)

    def __str__(self) -> str:
        if len(self.errors) == 1 and self.errors[0] == self.message:
            return self.message
        details = "; ".join(self.errors)
        return f"{self.message}: {details}"


class BuildError(VnfError):
    """Request could not be built from the dictionary."""

    UNKNOWN_SERVICE = "unknown-service"
    UNKNOWN_OPERATION = "unknown-operation"
    UNRESOLVED_PLACEHOLDER = "unresolved-placeholder"
    MISSING_SECRET = "missing-secret"

    def __init__(self, message: str, kind: str):
        self.message = message
        self.kind = kind
        super().__init__(f"[{kind}] {message}")


class CommError(VnfError):
    """Network or transport failure talking to an appliance."""

    def __init__(
        self,
        message: str,
        retriable: bool,
        status_code: Optional[int] = None,
        attempts: int = 1,
    ):
        self.message = message
        self.retriable = retriable
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)

    def __str__(self) -> str:
        kind = "retriable" if self.retriable else "permanent"
        suffix = f" after {self.attempts} attempts" if self.attempts > 1 else ""
        return f"{self.message} ({kind}){suffix}"


class ReconciliationError(VnfError):
    """A reconciliation pass could not complete for one appliance."""
    pass


class SecretNotFoundError(VnfError, KeyError):
    """A credential reference could not be resolved."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Secret reference not resolvable: {ref}")

    def __str__(self) -> str:
        return f"Secret reference not resolvable: {self.ref}"


class ApplianceStateError(VnfError):
    """Invalid appliance lifecycle transition."""
    pass


class InventoryError(VnfError):
    """Inventory file is inconsistent or references unknown items."""
    pass
