"""Translation and reconciliation engine."""
from .builder import RequestBuilder
from .response_parser import ResponseParser, decode_body
from .reconcile import ReconcileRequest, ReconciliationEngine
from .operations import VnfOperations

__all__ = [
    "RequestBuilder",
    "ResponseParser",
    "decode_body",
    "ReconcileRequest",
    "ReconciliationEngine",
    "VnfOperations",
]
