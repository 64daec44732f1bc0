"""Dictionary model - declarative per-vendor request/response schema.

Usage:
    from vnf_framework.dictionary import DictionaryParser, DictionaryValidator

    dictionary = DictionaryParser().parse(yaml_text)
    result = DictionaryValidator().validate(dictionary)
    if not result.is_valid:
        print(result.errors)
"""

from .schema import (
    AccessConfig,
    AuthType,
    Dictionary,
    OperationDefinition,
    OperationKind,
    ResponseMapping,
    ServiceDefinition,
    ValidationResult,
    ALLOWED_PROTOCOLS,
    SERVICE_FIREWALL,
    SERVICE_NAT,
    SERVICE_LOAD_BALANCER,
)
from .parser import DictionaryParser, parse_dictionary, compute_checksum
from .validator import (
    DictionaryValidator,
    ValidationRule,
    DEFAULT_RULES,
    validate_dictionary,
)
from ..errors import ParseError

__all__ = [
    # Schema classes
    "AccessConfig",
    "AuthType",
    "Dictionary",
    "OperationDefinition",
    "OperationKind",
    "ResponseMapping",
    "ServiceDefinition",
    "ValidationResult",
    "ALLOWED_PROTOCOLS",
    "SERVICE_FIREWALL",
    "SERVICE_NAT",
    "SERVICE_LOAD_BALANCER",
    # Parser
    "DictionaryParser",
    "ParseError",
    "parse_dictionary",
    "compute_checksum",
    # Validator
    "DictionaryValidator",
    "ValidationRule",
    "DEFAULT_RULES",
    "validate_dictionary",
]
