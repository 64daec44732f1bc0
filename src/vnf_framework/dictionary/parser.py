"""Parser for VNF dictionary documents.

Converts YAML text (or an already-loaded mapping) into a frozen Dictionary.
All structural problems are collected and reported together.
"""
import hashlib
import json
from typing import Any, Mapping, Optional, Union

import yaml

from ..template import find_malformed_placeholders
from ..errors import ParseError
from .schema import (
    DEFAULT_PORTS,
    AccessConfig,
    AuthType,
    Dictionary,
    OperationDefinition,
    ResponseMapping,
    ServiceDefinition,
)

REQUIRED_SECTIONS = ("access", "services")


class DictionaryParser:
    """Parse dictionary documents into Dictionary objects."""

    def parse(self, document: Union[str, bytes, Mapping[str, Any]]) -> Dictionary:
        """
        Parse a dictionary document.

        Args:
            document: YAML text or a mapping loaded elsewhere

        Returns:
            Dictionary object

        Raises:
            ParseError: If the document is malformed or incomplete. The
                ``errors`` attribute lists every problem found.
        """
        source = ""
        if isinstance(document, (str, bytes)):
            source = document.decode() if isinstance(document, bytes) else document
            data = self._load_yaml(source)
        else:
            data = document

        if not isinstance(data, Mapping):
            raise ParseError(
                "Invalid dictionary document",
                ["Top-level document must be a mapping"],
            )

        errors: list[str] = []

        for section in REQUIRED_SECTIONS:
            if section not in data or data[section] is None:
                errors.append(f"Missing required section: {section}")

        access = None
        if data.get("access") is not None:
            access = self._parse_access(data["access"], errors)

        services: dict[str, ServiceDefinition] = {}
        if data.get("services") is not None:
            services = self._parse_services(data["services"], errors)

        if errors or access is None:
            raise ParseError("Invalid dictionary document", errors)

        return Dictionary(
            id=compute_checksum(data),
            version=str(data.get("version", "1.0")),
            vendor=str(data.get("vendor") or ""),
            product=str(data.get("product") or ""),
            name=str(data.get("name") or ""),
            access=access,
            services=services,
            source=source,
        )

    def _load_yaml(self, source: str) -> Any:
        """Load YAML text, converting syntax errors to ParseError."""
        try:
            return yaml.safe_load(source)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark else ""
            raise ParseError(
                "Invalid dictionary document",
                [f"Invalid YAML{where}: {getattr(e, 'problem', None) or e}"],
            ) from e

    def _parse_access(
        self,
        config: Any,
        errors: list[str]
    ) -> Optional[AccessConfig]:
        """Parse the access section."""
        if not isinstance(config, Mapping):
            errors.append("Section 'access' must be a mapping")
            return None

        protocol = str(config.get("protocol") or "").strip().lower()
        if not protocol:
            errors.append("access.protocol is required")

        port_value = config.get("port", DEFAULT_PORTS.get(protocol, 0))
        try:
            if isinstance(port_value, bool):
                raise TypeError("boolean port")
            port = int(port_value)
        except (TypeError, ValueError):
            errors.append(f"access.port must be an integer, got '{port_value}'")
            port = 0

        auth_value = config.get("authType", config.get("auth_type"))
        try:
            auth_type = AuthType.from_value(auth_value)
        except ValueError:
            valid = ", ".join(a.value for a in AuthType)
            errors.append(f"Unknown access.authType '{auth_value}'. Valid: {valid}")
            auth_type = AuthType.NONE

        base_path = str(config.get("basePath") or "")
        if base_path:
            base_path = "/" + base_path.strip("/")

        return AccessConfig(
            protocol=protocol,
            port=port,
            base_path=base_path,
            auth_type=auth_type,
            token_ref=config.get("tokenRef"),
            token_header=str(config.get("tokenHeader") or "Authorization"),
            username_ref=config.get("usernameRef"),
            password_ref=config.get("passwordRef"),
            key_ref=config.get("keyRef"),
        )

    def _parse_services(
        self,
        config: Any,
        errors: list[str]
    ) -> dict[str, ServiceDefinition]:
        """Parse the services section."""
        if not isinstance(config, Mapping):
            errors.append("Section 'services' must be a mapping")
            return {}

        services = {}
        for service_name, operations_config in config.items():
            name = str(service_name)
            if operations_config is None:
                operations_config = {}
            if not isinstance(operations_config, Mapping):
                errors.append(f"Service '{name}' must be a mapping of operations")
                continue

            operations = {}
            for op_name, op_config in operations_config.items():
                operation = self._parse_operation(name, str(op_name), op_config, errors)
                if operation:
                    operations[operation.name] = operation

            services[name] = ServiceDefinition(name=name, operations=operations)

        return services

    def _parse_operation(
        self,
        service_name: str,
        op_name: str,
        config: Any,
        errors: list[str]
    ) -> Optional[OperationDefinition]:
        """Parse a single operation definition."""
        where = f"{service_name}.{op_name}"
        if not isinstance(config, Mapping):
            errors.append(f"Operation '{where}' must be a mapping")
            return None

        method = config.get("method")
        endpoint = config.get("endpoint")
        if not method:
            errors.append(f"Operation '{where}' is missing 'method'")
        if endpoint is None or endpoint == "":
            errors.append(f"Operation '{where}' is missing 'endpoint'")
        if not method or endpoint is None or endpoint == "":
            return None

        body = config.get("body")
        if body is not None and not isinstance(body, str):
            # Structured bodies are serialized so they still go through rendering
            body = json.dumps(body)

        headers_config = config.get("headers") or {}
        if not isinstance(headers_config, Mapping):
            errors.append(f"Operation '{where}' headers must be a mapping")
            headers_config = {}
        headers = {str(k): str(v) for k, v in headers_config.items()}

        templates = {"endpoint": str(endpoint), "body": body or ""}
        templates.update({f"header '{k}'": v for k, v in headers.items()})
        for label, template in templates.items():
            for fragment in find_malformed_placeholders(template):
                errors.append(
                    f"Malformed placeholder '{fragment}' in {where} {label}"
                )

        mapping = self._parse_response_mapping(
            where, config.get("responseMapping"), errors
        )

        pattern = config.get("successPattern")

        return OperationDefinition(
            name=op_name,
            method=str(method).strip().upper(),
            endpoint=str(endpoint),
            body=body,
            headers=headers,
            response_mapping=mapping,
            success_pattern=str(pattern) if pattern is not None else None,
        )

    def _parse_response_mapping(
        self,
        where: str,
        config: Any,
        errors: list[str]
    ) -> ResponseMapping:
        """Parse a responseMapping block."""
        if config is None:
            return ResponseMapping()
        if not isinstance(config, Mapping):
            errors.append(f"Operation '{where}' responseMapping must be a mapping")
            return ResponseMapping()

        code = config.get("successCode", 200)
        try:
            success_code = int(code)
        except (TypeError, ValueError):
            errors.append(f"Operation '{where}' successCode must be an integer, got '{code}'")
            success_code = 200

        item_paths = config.get("itemPaths") or {}
        if not isinstance(item_paths, Mapping):
            errors.append(f"Operation '{where}' itemPaths must be a mapping")
            item_paths = {}

        return ResponseMapping(
            success_code=success_code,
            id_path=config.get("idPath"),
            list_path=config.get("listPath"),
            item_paths={str(k): str(v) for k, v in item_paths.items()},
        )


def parse_dictionary(document: Union[str, bytes, Mapping[str, Any]]) -> Dictionary:
    """Parse with a default DictionaryParser."""
    return DictionaryParser().parse(document)


def compute_checksum(config: Mapping[str, Any]) -> str:
    """
    Compute SHA256 checksum of a dictionary document.

    Used as the dictionary identity: same content, same id.
    """
    config_str = json.dumps(
        _string_keys(config), sort_keys=True, separators=(",", ":"), default=str
    )
    hash_bytes = hashlib.sha256(config_str.encode()).hexdigest()
    return f"sha256:{hash_bytes[:16]}"


def _string_keys(value: Any) -> Any:
    """YAML allows non-string keys; JSON with sort_keys does not."""
    if isinstance(value, Mapping):
        return {str(k): _string_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_string_keys(v) for v in value]
    return value
