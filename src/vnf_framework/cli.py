#!/usr/bin/env python3
"""Command line tools for dictionary authors.

Usage:
    vnfctl validate DICTIONARY [--strict]
    vnfctl render DICTIONARY SERVICE OPERATION [--var KEY=VALUE ...] [--secret REF=VALUE ...]
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config.secrets import SecretResolver
from .config.settings import EngineSettings
from .dictionary.parser import DictionaryParser
from .dictionary.validator import DictionaryValidator
from .engine.builder import RequestBuilder
from .errors import BuildError, ParseError

logger = logging.getLogger(__name__)


def _parse_pairs(pairs: Optional[list[str]], option: str) -> dict[str, str]:
    """Turn ``["a=1", "b=2"]`` into ``{"a": "1", "b": "2"}``."""
    values = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"{option} expects KEY=VALUE, got '{pair}'")
        values[key] = value
    return values


def _load(path: Path):
    return DictionaryParser().parse(path.read_text())


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        dictionary = _load(args.dictionary)
    except ParseError as e:
        for error in e.errors:
            print(f"ERROR: {error}")
        return 1

    result = DictionaryValidator().validate(dictionary)
    for error in result.errors:
        print(f"ERROR: {error}")
    for warning in result.warnings:
        print(f"WARNING: {warning}")

    status = "valid" if result.is_valid else "invalid"
    print(
        f"{args.dictionary}: {status} ({len(result.errors)} errors, "
        f"{len(result.warnings)} warnings; services: {', '.join(result.services_found) or 'none'})"
    )
    if not result.is_valid:
        return 1
    if args.strict and result.warnings:
        return 2
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    try:
        variables = _parse_pairs(args.var, "--var")
        secrets = _parse_pairs(args.secret, "--secret")
    except ValueError as e:
        logger.error(str(e))
        return 1

    try:
        dictionary = _load(args.dictionary)
    except ParseError as e:
        logger.error(str(e))
        return 1

    builder = RequestBuilder(EngineSettings.from_env(), secrets=SecretResolver(values=secrets))
    try:
        request = builder.build(
            dictionary, args.service, args.operation, variables=variables
        )
    except BuildError as e:
        logger.error(str(e))
        return 1

    print(json.dumps(request.to_dict(), indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for vnfctl."""
    parser = argparse.ArgumentParser(
        prog="vnfctl",
        description="Validate and preview VNF dictionaries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    vnfctl validate dictionaries/acme-firewall.yaml
    vnfctl render dictionaries/acme-firewall.yaml Firewall delete --var externalId=17
""",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Parse and validate a dictionary")
    validate.add_argument("dictionary", type=Path, help="Dictionary YAML file")
    validate.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 2 when there are warnings",
    )
    validate.set_defaults(func=cmd_validate)

    render = sub.add_parser("render", help="Render the request for an operation")
    render.add_argument("dictionary", type=Path, help="Dictionary YAML file")
    render.add_argument("service", help="Service name, e.g. Firewall")
    render.add_argument("operation", help="Operation name, e.g. create")
    render.add_argument(
        "--var",
        action="append",
        metavar="KEY=VALUE",
        help="Template variable (repeatable)",
    )
    render.add_argument(
        "--secret",
        action="append",
        metavar="REF=VALUE",
        help="Value for a credential reference (repeatable)",
    )
    render.set_defaults(func=cmd_render)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)-5s | %(name)s | %(message)s",
    )

    if not args.dictionary.exists():
        logger.error(f"Dictionary file not found: {args.dictionary}")
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
