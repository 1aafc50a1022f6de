"""
Example runner: consume configured topics and log every new message.

Usage:
    # Configuration from environment (and .env in the working directory)
    KAFKA_TOPICS=learner-xapi KAFKA_CONSUMER_GROUP=test-group \\
        python -m simple_kafka_consumer

    # Configuration from a YAML file
    python -m simple_kafka_consumer --config consumer.yaml

    # Expose Prometheus metrics
    python -m simple_kafka_consumer --metrics-port 8000
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from prometheus_client import start_http_server

from simple_kafka_consumer.common.exceptions import ConfigurationError, ConsumerError
from simple_kafka_consumer.common.logging import get_logger, setup_logging
from simple_kafka_consumer.config import ConsumerConfig
from simple_kafka_consumer.consumer import ConsumerSession, LifecycleEvent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Consume Kafka topics and log each new message",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML config file (default: read KAFKA_* environment variables)",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: disabled)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    return parser.parse_args(argv)


def load_config(config_path: Optional[str]) -> ConsumerConfig:
    """Load config from YAML or the environment and validate it."""
    if config_path:
        config = ConsumerConfig.from_yaml(config_path)
    else:
        config = ConsumerConfig.from_env()
    config.validate()
    return config


def print_message(topic: str, offset: int, message: str) -> None:
    logger.info(f"{topic}@{offset}: {message}")


def log_lifecycle_event(event: LifecycleEvent) -> None:
    logger.info(
        f"Lifecycle event: {event.name.value}",
        extra={"event": event.name.value, "state": event.state.value},
    )


async def run_consumer(config: ConsumerConfig) -> None:
    """Run one session until SIGINT/SIGTERM or an adapter crash."""
    shutdown_event = asyncio.Event()
    session = ConsumerSession(config)

    for event in ("connect", "group_join", "rebalancing", "crash"):
        session.on(event, log_lifecycle_event)
    session.on("stop", lambda _event: shutdown_event.set())

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_event.set)

    await session.start(print_message)

    try:
        await shutdown_event.wait()
    finally:
        await session.stop()

    if session.last_error is not None:
        logger.warning(f"Session ended with error: {session.last_error}")


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    global logger

    load_dotenv()
    args = parse_args(argv)

    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))

    setup_logging(
        name="simple_kafka_consumer",
        log_dir=log_dir,
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
    )
    logger = get_logger(__name__)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.metrics_port:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    try:
        asyncio.run(run_consumer(config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except ConsumerError as e:
        logger.error(f"Consumer error: {e}", exc_info=True)
        return 1

    logger.info("Consumer shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
