"""Broker layer: transports, scoped tokens and the retrying client."""
from .base import Transport, TransportResult, tcp_probe
from .client import BrokerClient
from .http import HttpTransport
from .ssh import SshTransport
from .tokens import HmacTokenIssuer, TokenIssuer

__all__ = [
    "Transport",
    "TransportResult",
    "tcp_probe",
    "BrokerClient",
    "HttpTransport",
    "SshTransport",
    "HmacTokenIssuer",
    "TokenIssuer",
]
