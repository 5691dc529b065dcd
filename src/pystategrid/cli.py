"""Command-line entry point.

Reads configuration from the environment (and ``config.env`` for standalone
runs), then performs one fetch-archive-publish run.

Exit codes: 0 success, 1 run failed, 2 credentials missing or invalid config.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import datetime as dt
import logging
import sys
from collections.abc import Sequence
from typing import Any

from pystategrid import __version__
from pystategrid._runtime import detect_runtime
from pystategrid.config import StateGridConfig, load_env_file
from pystategrid.exceptions import StateGridConfigError, StateGridError
from pystategrid.runner import run

_logger = logging.getLogger("pystategrid")


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pystategrid",
        description="Fetch State Grid (95598) balance and usage, archive it locally and publish to MQTT.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--env-file", default="config.env", help="dotenv file for standalone runs")
    parser.add_argument("--days", type=int, help="daily window size ending yesterday")
    parser.add_argument("--start", type=_parse_date, help="daily window start (YYYY-MM-DD)")
    parser.add_argument("--end", type=_parse_date, help="daily window end (YYYY-MM-DD)")
    parser.add_argument("--cons-no", help="comma-separated account numbers to process")
    parser.add_argument("--no-mqtt", action="store_true", help="do not publish to MQTT")
    parser.add_argument("--no-history", action="store_true", help="do not write the local archive")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.days:
        overrides["query_days"] = args.days
    if args.start:
        overrides["query_start_date"] = args.start
    if args.end:
        overrides["query_end_date"] = args.end
    if args.cons_no:
        overrides["cons_no_filter"] = tuple(item.strip() for item in args.cons_no.split(",") if item.strip())
    if args.no_history:
        overrides["save_history"] = False
    return overrides


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    runtime = detect_runtime()
    env_loaded = load_env_file(args.env_file, runtime=runtime)

    try:
        config = StateGridConfig.from_env(**_overrides(args))
    except StateGridConfigError as exc:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        _logger.error("%s", exc)
        return 2
    if args.no_mqtt:
        config = dataclasses.replace(config, mqtt=dataclasses.replace(config.mqtt, enabled=False))

    logging.basicConfig(
        level=logging.DEBUG if args.debug or config.log_debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _logger.info("Runtime: %s%s", runtime.value, " (config.env loaded)" if env_loaded else "")

    try:
        config.require_credentials()
    except StateGridConfigError as exc:
        _logger.error("%s", exc)
        _logger.error("Standalone: copy config.env.example to config.env; Qinglong: set panel variables")
        return 2

    try:
        asyncio.run(run(config))
    except StateGridError as exc:
        _logger.error("Run failed: %s", exc)
        _logger.debug("Run failure details", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
