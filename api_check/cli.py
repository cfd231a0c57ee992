import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Optional, Sequence, Tuple

import uvicorn

from api_check import config
from api_check.main import create_app
from api_check.models.data_models import AppConfig, TestRunSummary
from api_check.services.config_store import ConfigError, ConfigStore, load_config
from api_check.services.metrics_store import MetricsStore
from api_check.services.test_runner import TestRunner

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.LOG_LEVEL,
        format=config.LOG_FORMAT,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_header(value: str) -> Tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Header must look like 'Name: value', got {value!r}")
    return name.strip(), header_value.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="api-check",
        description="A dev server with request counting, proxy support, and API testing",
    )
    parser.add_argument("-c", "--config", default=config.DEFAULT_CONFIG_FILE, help="Configuration file path")
    parser.add_argument("--host", help="Server host")
    parser.add_argument("-p", "--port", type=int, help="Server port")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {config.VERSION}")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("server", help="Start the HTTP server (default)")

    test = sub.add_parser("test", help="Run API tests")
    test.add_argument("-t", "--target", help="Target URL to test")
    # unset options fall back to the configured test section
    test.add_argument("-n", "--num-calls", type=int, help="Number of requests")
    test.add_argument("-f", "--frequency", type=int, help="Delay between requests in milliseconds")
    test.add_argument("-m", "--method", help="HTTP method")
    test.add_argument("-H", "--header", type=parse_header, action="append", default=[],
                      help="Extra header 'Name: value' (repeatable)")
    test.add_argument("-d", "--body", help="Request body")

    sub.add_parser("config", help="Show current configuration")
    return parser


def resolve_config(args: argparse.Namespace) -> AppConfig:
    try:
        app_config = load_config(args.config)
    except ConfigError as e:
        logger.warning(f"Failed to load config, using defaults: {e}")
        app_config = AppConfig()

    server = app_config.server
    if args.host:
        server = replace(server, host=args.host)
    if args.port is not None:
        server = replace(server, port=args.port)
    return replace(app_config, server=server)


def print_summary(summary: TestRunSummary) -> None:
    print("\n=== Test Results ===")
    print(f"Total requests: {summary.total_requests}")
    print(f"Successful: {summary.successful}")
    print(f"Failed: {summary.failed}")
    print(f"Average latency: {summary.avg_latency_ms:.2f} ms")
    print(f"Min latency: {summary.min_latency_ms:.2f} ms")
    print(f"Max latency: {summary.max_latency_ms:.2f} ms")
    print(f"Total duration: {summary.total_duration_ms:.2f} ms")


async def run_tests(store: ConfigStore, args: argparse.Namespace) -> TestRunSummary:
    configured = store.get().test
    test_config = replace(
        configured,
        num_calls=max(args.num_calls, 0) if args.num_calls is not None else configured.num_calls,
        frequency_ms=max(args.frequency, 0) if args.frequency is not None else configured.frequency_ms,
        method=args.method or configured.method,
        target_url=args.target or configured.target_url,
        body=args.body if args.body is not None else configured.body,
        headers=tuple(args.header) or configured.headers,
    )
    store.update_test(test_config)
    tester = TestRunner(store, MetricsStore(config.METRICS_MAX_ENTRIES))
    try:
        return await tester.run_with_config(test_config)
    finally:
        await tester.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    app_config = resolve_config(args)
    store = ConfigStore(app_config)

    if args.command == "test":
        summary = asyncio.run(run_tests(store, args))
        print_summary(summary)
        return 0

    if args.command == "config":
        print(json.dumps(app_config.to_dict(), indent=2))
        return 0

    logger.info(f"Starting API Check server on {app_config.server.host}:{app_config.server.port}")
    app = create_app(config=store)
    uvicorn.run(
        app,
        host=app_config.server.host,
        port=app_config.server.port,
        log_level="debug" if args.verbose else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
