#!/usr/bin/env python3
"""nacos-naming CLI - resolve healthy instances repeatedly and report how it went."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from nacos_naming.client import NamingClient
from nacos_naming.constants import DEFAULT_CONCURRENCY, DEFAULT_ITERATIONS
from nacos_naming.errors import ConfigError
from nacos_naming.loadtest import LoadReport, run_load
from nacos_naming.models.config import load_client_config
from nacos_naming.settings import settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nacos-naming",
        description="Load-test healthy-instance selection against a Nacos naming registry",
        epilog=(
            "Examples:\n"
            "  nacos-naming eff-pts-agent\n"
            "  nacos-naming eff-pts-agent --namespace-id test --iterations 1000 --concurrency 10\n"
            "  nacos-naming eff-pts-agent --config client.yaml --json\n"
            "  NACOS_IP_ADDR=10.0.0.5 nacos-naming eff-pts-agent\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("service", help="Service name to resolve")
    parser.add_argument("--group", default=None, help=f"Service group (default: {settings.nacos_group_name})")
    parser.add_argument("--config", type=Path, default=None, help="YAML client config (default: ~/.nacos_naming/config.yaml if present)")
    parser.add_argument("--ip-addr", default=None, help=f"Registry host (default: {settings.nacos_ip_addr})")
    parser.add_argument("--port", type=int, default=None, help=f"Registry port (default: {settings.nacos_port})")
    parser.add_argument("--username", default=None, help="Registry username (empty disables login)")
    parser.add_argument("--password", default=None, help="Registry password")
    parser.add_argument("--namespace-id", default=None, help="Namespace id (empty selects the public namespace)")
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS, help="Selections per virtual user (default: %(default)s)")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Concurrent virtual users (default: %(default)s)")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Output the report as JSON (for CI/pipelines)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Increase logging verbosity (DEBUG level)")
    return parser


async def run(client: NamingClient, service: str, group: str | None, iterations: int, concurrency: int) -> LoadReport:
    """Run the load and always close the client."""
    async with client:
        return await run_load(client, service, group, iterations=iterations, concurrency=concurrency)


def print_report(report: LoadReport) -> None:
    """Human-readable summary."""
    print(f"Service:      {report.service}")
    print(f"Users:        {report.virtual_users} x {report.iterations_per_user} iteration(s)")
    print(f"Selections:   {report.successes}/{report.calls} succeeded in {report.duration_s:.2f}s")
    lat = report.latency
    print(f"Latency (ms): p50={lat.p50_ms:.3f} p95={lat.p95_ms:.3f} p99={lat.p99_ms:.3f} max={lat.max_ms:.3f}")

    if report.endpoints:
        print("\n## Endpoints:")
        for address, count in report.endpoints.items():
            share = 100 * count / report.successes if report.successes else 0.0
            print(f"  {address:<24} {count:>8}  ({share:.1f}%)")

    if report.errors:
        print("\n## Errors:")
        for name, count in sorted(report.errors.items()):
            print(f"  {name:<24} {count:>8}")


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0=success, 1=configuration error, 2=runtime error, 3=some selections failed)
    """
    args = build_parser().parse_args()

    log_level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if args.iterations < 1 or args.concurrency < 1:
        logger.error("--iterations and --concurrency must be at least 1")
        return 1

    try:
        config = load_client_config(
            args.config,
            ip_addr=args.ip_addr,
            port=args.port,
            username=args.username,
            password=args.password,
            namespace_id=args.namespace_id,
        )
        client = NamingClient(config)
    except ConfigError as e:
        logger.error(f"{e}")
        return 1

    try:
        report = asyncio.run(run(client, args.service, args.group, args.iterations, args.concurrency))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 2
    except Exception as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 2

    if args.json_output:
        print(json.dumps(report.model_dump(), indent=2))
    else:
        print_report(report)

    return 3 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
