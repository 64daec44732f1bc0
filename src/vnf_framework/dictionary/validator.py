"""Semantic validation for parsed dictionaries.

Validation never raises and never mutates the dictionary. Each rule is a
plain callable ``rule(dictionary, result)`` so deployments can add or drop
checks without touching the validator.
"""
import re
from typing import Callable, Iterable, Optional

from ..pathexpr import PathSyntaxError, compile_path
from ..template import placeholder_names
from .schema import (
    ALLOWED_PROTOCOLS,
    HTTP_METHODS,
    HTTP_PROTOCOLS,
    AuthType,
    Dictionary,
    OperationKind,
    ValidationResult,
)

ValidationRule = Callable[[Dictionary, ValidationResult], None]


def check_protocol(dictionary: Dictionary, result: ValidationResult) -> None:
    """Protocol must be one of the supported transports."""
    protocol = dictionary.access.protocol
    if protocol not in ALLOWED_PROTOCOLS:
        result.add_error(
            f"Unknown protocol '{protocol}'. Valid: {', '.join(ALLOWED_PROTOCOLS)}"
        )


def check_port(dictionary: Dictionary, result: ValidationResult) -> None:
    """Port must be in 1-65535."""
    port = dictionary.access.port
    if port < 1 or port > 65535:
        result.add_error(f"Invalid port {port}: must be between 1 and 65535")


def check_credentials(dictionary: Dictionary, result: ValidationResult) -> None:
    """Each auth type needs its credential references."""
    access = dictionary.access
    if access.auth_type == AuthType.TOKEN and not access.token_ref:
        result.add_error("authType 'token' requires tokenRef")
    elif access.auth_type in (AuthType.BASIC, AuthType.SSH_PASSWORD):
        if not access.username_ref or not access.password_ref:
            result.add_error(
                f"authType '{access.auth_type.value}' requires usernameRef and passwordRef"
            )
    elif access.auth_type == AuthType.SSH_KEY:
        if not access.username_ref or not access.key_ref:
            result.add_error("authType 'ssh-key' requires usernameRef and keyRef")

    if access.auth_type in (AuthType.SSH_KEY, AuthType.SSH_PASSWORD) and access.is_http:
        result.add_warning(
            f"authType '{access.auth_type.value}' has no effect with protocol '{access.protocol}'"
        )


def check_service_operations(dictionary: Dictionary, result: ValidationResult) -> None:
    """Every service needs operations; delete and list are strongly advised."""
    for name, service in dictionary.services.items():
        if not service.operations:
            result.add_error(f"Service '{name}' has no operations")
            continue

        if not service.has_operation(OperationKind.DELETE.value):
            result.add_warning(f"Service '{name}' has no 'delete' operation")

        if not service.has_operation(OperationKind.LIST.value):
            result.add_warning(
                f"Service '{name}' has no 'list' operation - reconciliation disabled"
            )


def check_methods(dictionary: Dictionary, result: ValidationResult) -> None:
    """Methods must fit the access protocol."""
    protocol = dictionary.access.protocol
    for service_name, service in dictionary.services.items():
        for op_name, operation in service.operations.items():
            where = f"{service_name}.{op_name}"
            if operation.is_ssh:
                if protocol in HTTP_PROTOCOLS:
                    result.add_error(
                        f"Operation '{where}' uses method SSH but protocol is '{protocol}'"
                    )
                elif not operation.success_pattern:
                    result.add_warning(
                        f"Operation '{where}' has no successPattern - "
                        f"success is taken from the transport exit status"
                    )
            elif operation.method not in HTTP_METHODS:
                result.add_error(
                    f"Operation '{where}' has unknown method '{operation.method}'"
                )
            elif protocol == "ssh":
                result.add_error(
                    f"Operation '{where}' uses HTTP method {operation.method} "
                    f"but protocol is 'ssh'"
                )


def check_response_mappings(dictionary: Dictionary, result: ValidationResult) -> None:
    """Path expressions and patterns must compile."""
    for service_name, service in dictionary.services.items():
        for op_name, operation in service.operations.items():
            where = f"{service_name}.{op_name}"
            mapping = operation.response_mapping

            paths = {"idPath": mapping.id_path, "listPath": mapping.list_path}
            paths.update({f"itemPaths.{k}": v for k, v in mapping.item_paths.items()})
            for label, path in paths.items():
                if path is None:
                    continue
                try:
                    compile_path(path)
                except PathSyntaxError as e:
                    result.add_error(f"Operation '{where}' {label}: {e}")

            if operation.success_pattern:
                try:
                    re.compile(operation.success_pattern)
                except re.error as e:
                    result.add_error(
                        f"Operation '{where}' successPattern is not a valid regex: {e}"
                    )

            if op_name == OperationKind.LIST.value and not mapping.list_path:
                result.add_warning(
                    f"Operation '{where}' has no listPath - the whole response is "
                    f"treated as the item list"
                )

            if op_name == OperationKind.CREATE.value and not mapping.id_path:
                result.add_warning(
                    f"Operation '{where}' has no idPath - created rules cannot be "
                    f"correlated during reconciliation"
                )


def check_delete_endpoints(dictionary: Dictionary, result: ValidationResult) -> None:
    """Delete requests should address the rule by its external id."""
    for service_name, service in dictionary.services.items():
        operation = service.get_operation(OperationKind.DELETE.value)
        if operation is None:
            continue
        referenced = (
            placeholder_names(operation.endpoint) + placeholder_names(operation.body)
        )
        if "externalId" not in referenced:
            result.add_warning(
                f"Operation '{service_name}.delete' does not reference ${{externalId}}"
            )


DEFAULT_RULES: tuple[ValidationRule, ...] = (
    check_protocol,
    check_port,
    check_credentials,
    check_service_operations,
    check_methods,
    check_response_mappings,
    check_delete_endpoints,
)


class DictionaryValidator:
    """Validate a parsed dictionary for semantic problems."""

    def __init__(self, rules: Optional[Iterable[ValidationRule]] = None):
        """
        Initialize validator.

        Args:
            rules: Rule callables to run; defaults to DEFAULT_RULES
        """
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES

    def validate(self, dictionary: Dictionary) -> ValidationResult:
        """
        Validate a dictionary.

        Args:
            dictionary: The parsed dictionary

        Returns:
            ValidationResult with errors, warnings and services found
        """
        result = ValidationResult(services_found=list(dictionary.services))
        for rule in self.rules:
            rule(dictionary, result)
        return result

    def with_rules(self, *extra: ValidationRule) -> "DictionaryValidator":
        """New validator running the current rules plus ``extra``."""
        return DictionaryValidator(self.rules + tuple(extra))


def validate_dictionary(dictionary: Dictionary) -> ValidationResult:
    """Validate with the default rule set."""
    return DictionaryValidator().validate(dictionary)
