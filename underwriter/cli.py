#!/usr/bin/env python3
"""
underwriter CLI

Load a berth from a YAML configuration and resolve guarantees from it.

Usage:
  underwriter qualifiers <config.yaml>
  underwriter resolve <config.yaml> <qualifier>:<identifier> ... [-f <qualifier>:<identifier>=<json>]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional, Tuple

from .config import BerthConfig, build_berth
from .errors import GuarantorError


def parse_pair(pair_str: str) -> Tuple[str, str]:
    """
    Parse a guarantee reference: qualifier:identifier

    Returns (qualifier, identifier)
    """
    if ":" not in pair_str:
        raise ValueError(f"Invalid reference: {pair_str}. Expected qualifier:identifier")
    qualifier, identifier = pair_str.split(":", 1)
    if not qualifier or not identifier:
        raise ValueError(f"Invalid reference: {pair_str}. Expected qualifier:identifier")
    return qualifier, identifier


def parse_fulfillment(fulfill_str: str) -> Tuple[str, str, Any]:
    """
    Parse a fulfillment: qualifier:identifier=<json value>

    Values that are not valid JSON are used as plain strings.
    """
    if "=" not in fulfill_str:
        raise ValueError(f"Invalid fulfillment: {fulfill_str}. Expected qualifier:identifier=value")
    reference, raw = fulfill_str.split("=", 1)
    qualifier, identifier = parse_pair(reference)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return qualifier, identifier, value


async def _resolve(args) -> List[dict]:
    berth = build_berth(BerthConfig.from_file(args.config))

    # Fulfillments are awaited too, so a rejected -f fails the command
    fulfillments = []
    for fulfill_str in args.fulfill or []:
        qualifier, identifier, value = parse_fulfillment(fulfill_str)
        fulfillments.append(asyncio.shield(berth.fulfill(qualifier, identifier, value)))

    pairs = [parse_pair(p) for p in args.pairs]
    requested = [
        asyncio.shield(berth.get(qualifier, identifier)) for qualifier, identifier in pairs
    ]
    pending = asyncio.gather(*fulfillments, *requested)
    values = await asyncio.wait_for(pending, timeout=args.timeout)
    values = values[len(fulfillments):]

    return [
        {"qualifier": qualifier, "identifier": identifier, "guarantee": value}
        for (qualifier, identifier), value in zip(pairs, values)
    ]


def cmd_resolve(args):
    """Resolve guarantees and print them as JSON."""
    try:
        results = asyncio.run(_resolve(args))
    except asyncio.TimeoutError:
        print(f"Error: timed out after {args.timeout}s", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        # Retrievers and initializers may raise anything
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(results, indent=2, default=str))


def cmd_qualifiers(args):
    """List the qualifiers a configuration defines."""
    try:
        berth = build_berth(BerthConfig.from_file(args.config))
    except (GuarantorError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    for qualifier in berth.qualifiers():
        print(qualifier)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="underwriter",
        description="underwriter - single-flight guarantee registries",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve guarantees")
    resolve_parser.add_argument("config", help="Berth YAML file")
    resolve_parser.add_argument("pairs", nargs="+", help="Reference: qualifier:identifier")
    resolve_parser.add_argument("-f", "--fulfill", action="append",
                                help="Fulfill first: qualifier:identifier=value")
    resolve_parser.add_argument("--timeout", type=float, default=None,
                                help="Give up after this many seconds")

    # qualifiers command
    qualifiers_parser = subparsers.add_parser("qualifiers", help="List configured qualifiers")
    qualifiers_parser.add_argument("config", help="Berth YAML file")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "resolve":
        cmd_resolve(args)
    elif args.command == "qualifiers":
        cmd_qualifiers(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
