"""Run a cascade service against Kafka. Use --help for usage."""

import argparse
import asyncio
import importlib
import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from prometheus_client import start_http_server

from cascade.broker import Broker
from cascade.consumer import continuation_service
from cascade.dlq import DeadLetterPublisher
from cascade.kafka import KafkaBroker
from cascade.metrics import LevelCounter
from cascade.service import CascadeService, create_service
from cascade.signals import setup_shutdown_signal_handlers
from cascade.types import RouteCallback, ServiceCallback
from config import CascadeConfig, load_config
from core.errors import CascadeError
from core.logging import setup_logging
from core.resilience import RetryConfig

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m cascade",
        description="Run a retry-topic cascade in front of a service callable",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with cascade.yaml from the working directory
    python -m cascade --service myapp.handlers:handle_order

    # Continuation-style callable: handle(message, resolve, reject)
    python -m cascade --service myapp.handlers:handle --continuation

    # Override retry levels and expose metrics
    python -m cascade --service myapp.handlers:handle --retry-levels 5 --metrics-port 9090
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("cascade.yaml"),
        help="Path to the cascade YAML config (default: ./cascade.yaml)",
    )
    parser.add_argument(
        "--service",
        required=True,
        help="Service callable as 'package.module:attribute'",
    )
    parser.add_argument(
        "--success",
        default=None,
        help="Optional success callback as 'package.module:attribute'",
    )
    parser.add_argument(
        "--continuation",
        action="store_true",
        help="Service callable takes (message, resolve, reject) instead of returning a ServiceOutcome",
    )
    parser.add_argument(
        "--retry-levels",
        type=int,
        default=None,
        help="Override cascade.retry_levels from the config file",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for the Prometheus metrics server (default: cascade.metrics_port, off if unset)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--log-to-file",
        action="store_true",
        help="Also write JSON logs to a rotating file under --log-dir. "
        "Can also be set via LOG_TO_FILE environment variable.",
    )

    return parser.parse_args(argv)


def load_callable(path: str) -> Callable[..., Any]:
    """Resolve 'package.module:attr.sub' to the object it names."""
    module_name, sep, attr_path = path.partition(":")
    if not sep or not module_name or not attr_path:
        raise ValueError(f"Expected 'package.module:attribute', got {path!r}")

    obj: Any = importlib.import_module(module_name)
    for attr in attr_path.split("."):
        obj = getattr(obj, attr)

    if not callable(obj):
        raise TypeError(f"{path} is not callable")
    return obj


def build_service(
    config: CascadeConfig,
    service_cb: ServiceCallback,
    success_cb: RouteCallback | None = None,
    broker: Broker | None = None,
) -> tuple[CascadeService, DeadLetterPublisher, LevelCounter]:
    """Wire a CascadeService, its dead-letter publisher and level counter from config."""
    broker = broker or KafkaBroker(config)
    publish_retry = RetryConfig.from_dict(config.publish_retry)

    dead_letter = DeadLetterPublisher(
        broker.producer(),
        source_topic=config.topic,
        dead_letter_topic=config.get_dead_letter_topic(),
        group_id=config.group_id,
        publish_retry=publish_retry,
    )

    service = create_service(
        broker,
        config.topic,
        config.group_id,
        service_cb,
        success_cb,
        dead_letter,
        service_timeout=config.service_timeout_seconds,
        publish_retry=publish_retry,
        num_partitions=config.num_partitions,
        replication_factor=config.replication_factor,
    )
    counter = LevelCounter(config.topic, config.retry_levels).attach(service)
    return service, dead_letter, counter


async def run_cascade(
    config: CascadeConfig,
    service_cb: ServiceCallback,
    success_cb: RouteCallback | None = None,
    shutdown_event: asyncio.Event | None = None,
    broker: Broker | None = None,
) -> LevelCounter:
    """Connect, provision retry levels and run until ``shutdown_event`` is set."""
    shutdown_event = shutdown_event or asyncio.Event()
    service, dead_letter, counter = build_service(config, service_cb, success_cb, broker)

    await service.connect()
    try:
        await service.set_retry_levels(config.retry_levels, config.retry_options or None)
        await service.run()
        logger.info(
            "Cascade running, waiting for shutdown signal",
            extra={"source_topic": config.topic, "retry_levels": config.retry_levels},
        )
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down cascade")
        try:
            try:
                await service.stop()
            finally:
                await service.disconnect()
        finally:
            await dead_letter.close()
            logger.info(
                "Cascade stopped. Successes per level: %s, dead-lettered: %d",
                counter.counts[:-1],
                counter.dead_lettered,
            )

    return counter


def main(argv: list[str] | None = None) -> int:
    load_dotenv(Path.cwd() / ".env")
    args = parse_args(argv)

    log_to_file = args.log_to_file or os.getenv("LOG_TO_FILE", "false").lower() in ("true", "1", "yes")
    log_dir = args.log_dir or Path(os.getenv("LOG_DIR", "logs"))

    overrides = {}
    if args.retry_levels is not None:
        overrides["retry_levels"] = args.retry_levels

    try:
        config = load_config(args.config, overrides=overrides or None)
        setup_logging(
            name=config.group_id,
            log_dir=log_dir,
            console_level=getattr(logging, args.log_level),
            log_to_stdout=not log_to_file,
        )
        service_cb = load_callable(args.service)
        if args.continuation:
            service_cb = continuation_service(service_cb)
        success_cb = load_callable(args.success) if args.success else None
    except (FileNotFoundError, ValueError, ImportError, AttributeError, TypeError) as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Startup failed: %s", e)
        return 1

    metrics_port = args.metrics_port or config.metrics_port
    if metrics_port:
        start_http_server(metrics_port)
        logger.info("Metrics server started", extra={"operation": "metrics", "port": metrics_port})

    async def _run() -> None:
        shutdown_event = asyncio.Event()
        setup_shutdown_signal_handlers(shutdown_event.set)
        await run_cascade(config, service_cb, success_cb, shutdown_event)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, exiting")
    except CascadeError as e:
        logger.error("Cascade terminated: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
