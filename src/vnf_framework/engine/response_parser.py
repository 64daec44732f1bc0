"""Interpret appliance responses using a dictionary's response mappings."""
import json
import logging
import re
from typing import Any, Mapping, Optional

import yaml

from ..dictionary.schema import Dictionary, OperationDefinition, OperationKind
from ..models import DeviceRule, Response
from ..pathexpr import PathSyntaxError, compile_path
from ..template import to_template_string

logger = logging.getLogger(__name__)

# Vendor error fields, checked in order
_ERROR_FIELDS = ("error", "message", "errors", "detail")


def decode_body(body: Optional[str]) -> Any:
    """Parse a response body without assuming its format.

    JSON first, then a YAML mapping or list; anything else is returned as
    the raw text.
    """
    if body is None or not body.strip():
        return None
    try:
        return json.loads(body)
    except ValueError:
        pass
    try:
        data = yaml.safe_load(body)
    except yaml.YAMLError:
        return body
    if isinstance(data, (Mapping, list)):
        return data
    return body


def _scalar_id(value: Any) -> Optional[str]:
    """Scalar ids become strings; empty or structured values are no id."""
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return None
    text = to_template_string(value).strip()
    return text or None


class ResponseParser:
    """Success detection, id extraction and list parsing.

    Args:
        error_body_limit: Max characters of raw body in extracted error messages
    """

    def __init__(self, error_body_limit: int = 512):
        self.error_body_limit = error_body_limit

    def _operation(
        self,
        dictionary: Dictionary,
        operation_name: str,
        service_name: Optional[str],
    ) -> Optional[OperationDefinition]:
        if service_name:
            return dictionary.get_operation(service_name, operation_name)
        return dictionary.find_operation(operation_name)

    def is_success(
        self,
        response: Response,
        dictionary: Dictionary,
        operation_name: str,
        service_name: Optional[str] = None,
    ) -> bool:
        """HTTP: status equals the success code. SSH: success pattern matches."""
        operation = self._operation(dictionary, operation_name, service_name)
        if operation is None:
            return response.success

        if operation.is_ssh or not dictionary.access.is_http:
            if not operation.success_pattern:
                return response.success
            try:
                return re.search(operation.success_pattern, response.body or "") is not None
            except re.error as e:
                logger.warning(f"Invalid success pattern for {operation_name}: {e}")
                return False

        return response.status_code == operation.response_mapping.success_code

    def extract_external_id(
        self,
        response: Response,
        dictionary: Dictionary,
        operation_name: str,
        service_name: Optional[str] = None,
    ) -> Optional[str]:
        """Apply the operation's id path to the body, e.g. ``$.data.id``."""
        operation = self._operation(dictionary, operation_name, service_name)
        if operation is None or not operation.response_mapping.id_path:
            return None

        document = decode_body(response.body)
        if not isinstance(document, (Mapping, list)):
            return None

        try:
            value = compile_path(operation.response_mapping.id_path).find_first(document)
        except PathSyntaxError as e:
            logger.warning(f"Cannot extract id for {operation_name}: {e}")
            return None
        return _scalar_id(value)

    def parse_list_response(
        self,
        response: Response,
        dictionary: Dictionary,
        service_name: str,
    ) -> list[DeviceRule]:
        """Turn a list response into device rules, in device order."""
        operation = dictionary.get_operation(service_name, OperationKind.LIST.value)
        if operation is None:
            logger.warning(f"Service '{service_name}' has no list operation")
            return []

        mapping = operation.response_mapping
        document = decode_body(response.body)
        items = self._list_items(document, mapping.list_path)

        rules = []
        for index, item in enumerate(items):
            properties = self._item_properties(item, mapping.item_paths)
            external_id = self._item_id(item, properties, mapping.item_paths, mapping.id_path)
            if external_id is None:
                logger.warning(
                    f"{service_name} list item {index} has no id; skipping"
                )
                continue
            rules.append(DeviceRule(external_id, service_name, properties))

        logger.debug(f"Parsed {len(rules)} {service_name} rules from list response")
        return rules

    def _list_items(self, document: Any, list_path: Optional[str]) -> list[Any]:
        if document is None:
            return []
        if list_path:
            try:
                matches = compile_path(list_path).find_all(document)
            except PathSyntaxError as e:
                logger.warning(f"Invalid list path: {e}")
                return []
            if len(matches) == 1 and isinstance(matches[0], list):
                matches = matches[0]
        elif isinstance(document, list):
            matches = document
        elif isinstance(document, Mapping):
            matches = [document]
        else:
            return []
        return [m for m in matches if m is not None]

    def _item_properties(self, item: Any, item_paths: Mapping[str, str]) -> dict[str, Any]:
        if not item_paths:
            return dict(item) if isinstance(item, Mapping) else {}

        properties = {}
        for field_name, path in item_paths.items():
            try:
                properties[field_name] = compile_path(path).find_first(item)
            except PathSyntaxError as e:
                logger.warning(f"Invalid item path for '{field_name}': {e}")
                properties[field_name] = None
        return properties

    def _item_id(
        self,
        item: Any,
        properties: Mapping[str, Any],
        item_paths: Mapping[str, str],
        id_path: Optional[str],
    ) -> Optional[str]:
        if not isinstance(item, (Mapping, list)):
            return _scalar_id(item)
        if "id" in item_paths:
            return _scalar_id(properties.get("id"))
        if id_path:
            try:
                found = _scalar_id(compile_path(id_path).find_first(item))
            except PathSyntaxError:
                found = None
            if found is not None:
                return found
        if isinstance(item, Mapping):
            return _scalar_id(item.get("id"))
        return None

    def extract_error_message(self, response: Response) -> str:
        """Best-effort vendor error text, else the truncated raw body."""
        document = decode_body(response.body)
        if isinstance(document, Mapping):
            for field_name in _ERROR_FIELDS:
                message = _error_text(document.get(field_name))
                if message:
                    return message

        if response.error_message:
            return response.error_message

        body = (response.body or "").strip()
        if not body:
            return f"HTTP {response.status_code}"
        if len(body) > self.error_body_limit:
            return body[: self.error_body_limit] + "..."
        return body


def _error_text(value: Any) -> Optional[str]:
    """Text from an error field: a string, ``{message: ...}`` or a list of those."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping):
        return _error_text(value.get("message"))
    if isinstance(value, list) and value:
        return _error_text(value[0])
    return None
