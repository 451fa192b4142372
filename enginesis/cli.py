"""Command-line entry point.

    enginesis-client --site-id 106 --developer-key KEY call GameGet game_id=1099
    enginesis-client drain
    enginesis-client --site-id 106 --developer-key KEY --stage q configure

Settings come from the JSON config file (default ~/.enginesis/enginesis-client.json),
overridden by the command-line flags.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .client import EnginesisClient
from .client_config import EnginesisConfig, default_config_path, load_config, save_config
from .error_handling import is_error, result_to_string
from .local_storage import LocalStorage


logger = logging.getLogger(__name__)

_STAGE_LETTERS = ("l", "d", "q", "x")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="enginesis-client", description="Enginesis API client")
    parser.add_argument("--config", default=None, help=f"config file (default {default_config_path()})")
    parser.add_argument("--site-id", type=int, default=None)
    parser.add_argument("--developer-key", default=None)
    parser.add_argument(
        "--stage",
        type=stage_arg,
        default=None,
        help="server stage: live, l, d, q, x, * (match this host) or a host name; --stage=-q also works",
    )
    parser.add_argument("--storage", default=None, help="storage file (default $ENGINESIS_STORAGE_PATH)")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)
    call = sub.add_parser("call", help="call a service endpoint and print the JSON result")
    call.add_argument("fn", help="service name, e.g. GameGet")
    call.add_argument("params", nargs="*", metavar="key=value")
    sub.add_parser("drain", help="send the requests queued while offline")
    sub.add_parser("configure", help="write the effective settings to the config file")
    return parser


def stage_arg(value: str) -> str:
    """Map a command-line stage to a server stage; the bare letters l, d, q, x gain their leading dash."""

    value = value.strip()
    if value.lower() in ("", "live"):
        return ""
    if value.lower() in _STAGE_LETTERS:
        return "-" + value.lower()
    return value


def parse_key_values(pairs: List[str]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {pair!r}")
        params[key] = value
    return params


def effective_config(args: argparse.Namespace) -> Dict[str, Any]:
    data = load_config(args.config)
    config = EnginesisConfig.from_dict(data).to_dict() if data else {}
    if args.site_id is not None:
        config["site_id"] = args.site_id
    if args.developer_key is not None:
        config["developer_key"] = args.developer_key
    if args.stage is not None:
        config["server_stage"] = args.stage
    return config


async def _run(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    client = EnginesisClient(storage=LocalStorage(args.storage), restore_delay=0)
    try:
        await client.init(config)
        if args.command == "call":
            result = await client.request(args.fn, parse_key_values(args.params))
            print(json.dumps(result, indent=2, ensure_ascii=False))
            if is_error(result):
                logger.error("%s failed: %s", args.fn, result_to_string(result))
                return 1
            return 0

        await client.wait_restored()
        remaining = len(client.queue)
        print(f"{remaining} request(s) still queued")
        return 0 if remaining == 0 else 1
    finally:
        await client.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = effective_config(args)

    if args.command == "configure":
        path = args.config or default_config_path()
        save_config(path, config)
        print(f"wrote {path}")
        return 0

    try:
        return asyncio.run(_run(args, config))
    except ValueError as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
