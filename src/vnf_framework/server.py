"""MCP Server for VNF dictionary authoring and reconciliation.

Tools exposed:
- list_appliances: List appliances with their dictionary and rule counts
- validate_dictionary: Parse and validate a dictionary document
- preview_request: Render the request an operation would send (no I/O)
- test_connectivity: Probe an appliance and update its health
- reconcile_network: Detect (and optionally correct) drift for a network
- get_audit_log: Recent changes pushed to appliances
"""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .config.inventory import ApplianceInventory
from .dictionary.parser import DictionaryParser
from .dictionary.schema import Dictionary
from .dictionary.validator import DictionaryValidator
from .engine.operations import VnfOperations
from .errors import ParseError, VnfError
from .models import rule_from_dict
from .utils.audit_log import get_recent_changes, setup_audit_logging
from .utils.logging_config import setup_logging, timed_section

logger = logging.getLogger(__name__)

RESOURCE_SCHEME = "vnf://dictionary/"

# Global state (initialized on first use)
inventory: Optional[ApplianceInventory] = None
operations: Optional[VnfOperations] = None


def get_inventory() -> ApplianceInventory:
    """Get or create the appliance inventory."""
    global inventory
    if inventory is None:
        inventory = ApplianceInventory(os.environ.get("VNF_CONFIG"))
    return inventory


def get_operations() -> VnfOperations:
    """Get or create the operations facade bound to the inventory."""
    global operations
    if operations is None:
        operations = VnfOperations.from_inventory(get_inventory())
    return operations


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


# Create MCP server
server = Server("vnf-framework")


# === TOOLS ===

@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="list_appliances",
            description="List VNF appliances with network, dictionary, state and health",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="validate_dictionary",
            description=(
                "Parse and validate a vendor dictionary. Pass the YAML text as "
                "'content', a file 'path', or the 'dictionary' alias from the inventory."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "Dictionary YAML text"},
                    "path": {"type": "string", "description": "Path to a dictionary file"},
                    "dictionary": {"type": "string", "description": "Inventory alias or id"},
                },
                "required": []
            }
        ),
        Tool(
            name="preview_request",
            description=(
                "Render the request a dictionary operation would send, without sending it. "
                "Credential headers are masked."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "dictionary": {"type": "string", "description": "Inventory alias or id"},
                    "service": {"type": "string", "description": "Service, e.g. 'Firewall'"},
                    "operation": {"type": "string", "description": "Operation, e.g. 'create'"},
                    "appliance_id": {
                        "type": "string",
                        "description": "Target appliance (adds managementIp and a scoped token)"
                    },
                    "rule": {
                        "type": "object",
                        "description": "Rule fields, e.g. {\"id\": \"fw-1\", \"start_port\": 22}"
                    },
                    "variables": {
                        "type": "object",
                        "description": "Extra template variables"
                    },
                },
                "required": ["dictionary", "service", "operation"]
            }
        ),
        Tool(
            name="test_connectivity",
            description="Probe an appliance's management address and update its health",
            inputSchema={
                "type": "object",
                "properties": {
                    "appliance_id": {"type": "string", "description": "Appliance ID"}
                },
                "required": ["appliance_id"]
            }
        ),
        Tool(
            name="reconcile_network",
            description=(
                "Compare desired rules with the appliance's actual rules. "
                "Dry run by default: differences are flagged, nothing is changed."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "network_id": {"type": "string", "description": "Network ID"},
                    "dry_run": {
                        "type": "boolean",
                        "description": "Only report drift (default: true)",
                        "default": True
                    },
                    "wait": {
                        "type": "boolean",
                        "description": "Wait for a running pass instead of rejecting (default: true)",
                        "default": True
                    },
                },
                "required": ["network_id"]
            }
        ),
        Tool(
            name="get_audit_log",
            description="Recent changes pushed to appliances",
            inputSchema={
                "type": "object",
                "properties": {
                    "appliance_id": {"type": "string", "description": "Filter by appliance"},
                    "service": {"type": "string", "description": "Filter by service"},
                    "limit": {"type": "integer", "description": "Max records (default 20)", "default": 20},
                },
                "required": []
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    subject = arguments.get("appliance_id") or arguments.get("network_id")

    async with timed_section(f"tool:{name}", appliance_id=subject):
        try:
            if name == "list_appliances":
                return await handle_list_appliances(get_inventory())

            elif name == "validate_dictionary":
                return await handle_validate_dictionary(
                    content=arguments.get("content"),
                    path=arguments.get("path"),
                    alias=arguments.get("dictionary"),
                )

            elif name == "preview_request":
                return await handle_preview_request(get_operations(), arguments)

            elif name == "test_connectivity":
                return await handle_test_connectivity(
                    get_operations(), arguments["appliance_id"]
                )

            elif name == "reconcile_network":
                return await handle_reconcile_network(
                    get_operations(),
                    arguments["network_id"],
                    arguments.get("dry_run", True),
                    arguments.get("wait", True),
                )

            elif name == "get_audit_log":
                return await handle_get_audit_log(
                    arguments.get("appliance_id"),
                    arguments.get("service"),
                    arguments.get("limit", 20),
                )

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]


# === TOOL HANDLERS ===

async def handle_list_appliances(inv: ApplianceInventory) -> list[TextContent]:
    """List all configured appliances."""
    return _text({"appliances": inv.summary()})


async def handle_validate_dictionary(
    content: Optional[str] = None,
    path: Optional[str] = None,
    alias: Optional[str] = None,
) -> list[TextContent]:
    """Parse and validate a dictionary; report every problem found."""
    if alias:
        dictionary = get_inventory().get_dictionary(alias)
    else:
        if path:
            content = Path(path).expanduser().read_text()
        if not content:
            return _text({"valid": False, "errors": ["Provide 'content', 'path' or 'dictionary'"]})
        try:
            dictionary = DictionaryParser().parse(content)
        except ParseError as e:
            return _text({"valid": False, "stage": "parse", "errors": e.errors, "warnings": []})

    result = DictionaryValidator().validate(dictionary)
    payload = result.to_dict()
    payload["stage"] = "validate"
    payload["dictionary"] = dictionary.summary()
    return _text(payload)


async def handle_preview_request(ops: VnfOperations, args: dict) -> list[TextContent]:
    """Build a request without sending it."""
    inv = get_inventory()
    dictionary = inv.get_dictionary(args["dictionary"])
    service = args["service"]

    appliance = None
    if args.get("appliance_id"):
        appliance = inv.get_appliance(args["appliance_id"])

    rule = None
    if args.get("rule"):
        rule = rule_from_dict(service, args["rule"])

    try:
        request = ops.builder.build(
            dictionary,
            service,
            args["operation"],
            rule=rule,
            appliance=appliance,
            variables=args.get("variables"),
        )
    except VnfError as e:
        return _text({"success": False, "error": str(e), "kind": getattr(e, "kind", None)})

    return _text({"success": True, "request": request.to_dict()})


async def handle_test_connectivity(ops: VnfOperations, appliance_id: str) -> list[TextContent]:
    """Probe an appliance."""
    appliance = get_inventory().get_appliance(appliance_id)
    result = await ops.check_health(appliance)
    payload = result.to_dict()
    payload["appliance"] = appliance.to_dict()
    return _text(payload)


async def handle_reconcile_network(
    ops: VnfOperations,
    network_id: str,
    dry_run: bool = True,
    wait: bool = True,
) -> list[TextContent]:
    """Run a reconciliation pass."""
    result = await ops.reconcile(network_id, dry_run=dry_run, wait=wait)
    return _text(result.to_dict())


async def handle_get_audit_log(
    appliance_id: Optional[str] = None,
    service: Optional[str] = None,
    limit: int = 20,
) -> list[TextContent]:
    """Get recent changes from the audit log."""
    records = get_recent_changes(appliance_id=appliance_id, service=service, limit=limit)
    return _text({
        "total_records": len(records),
        "filters": {"appliance_id": appliance_id, "service": service, "limit": limit},
        "records": [vars(r) for r in records],
    })


# === RESOURCES ===

def _dictionary_resource(alias: str, dictionary: Dictionary) -> Resource:
    return Resource(
        uri=AnyUrl(f"{RESOURCE_SCHEME}{alias}"),
        name=dictionary.name or f"{dictionary.vendor} {dictionary.product}".strip() or alias,
        description=f"Dictionary {dictionary.id} (version {dictionary.version})",
        mimeType="application/yaml",
    )


@server.list_resources()
async def list_resources() -> list[Resource]:
    """List dictionaries as resources."""
    inv = get_inventory()
    return [
        _dictionary_resource(alias, inv.get_dictionary(alias))
        for alias in inv.get_dictionary_aliases()
    ]


@server.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a dictionary's source document."""
    # Parse URI: vnf://dictionary/<alias>
    uri_str = str(uri)
    if uri_str.startswith(RESOURCE_SCHEME):
        alias = uri_str[len(RESOURCE_SCHEME):].strip("/")
        try:
            dictionary = get_inventory().get_dictionary(alias)
        except KeyError:
            return json.dumps({"error": f"Unknown dictionary: {alias}"})
        return dictionary.source or json.dumps(dictionary.summary(), indent=2)

    return json.dumps({"error": f"Unknown resource: {uri}"})


def main():
    """Run the MCP server."""
    setup_logging()
    setup_audit_logging()

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    finally:
        if operations:
            asyncio.run(operations.close())


if __name__ == "__main__":
    main()
