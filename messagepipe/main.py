#!/usr/bin/env python3
"""
Main entry point for running the messagepipe demo.

Starts the consumer group, sends a batch from three producers, waits for the
group to commit everything and prints what reached the store.

Usage:
    python -m messagepipe.main --count 9
    python -m messagepipe.main --config my.yaml --cleanup-minutes 60
"""

import argparse
import json
import sys

from messagepipe.bootstrap import build_application
from messagepipe.service.demo import MultiProducerDemo
from messagepipe.utils.config import Config
from messagepipe.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="messagepipe - partitioned pub/sub into an indexed store"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML file merged over the default configuration",
    )

    parser.add_argument(
        "--count",
        type=int,
        default=9,
        help="Messages to send across the three producers (default: 9)",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for the consumer group to drain (default: 60)",
    )

    parser.add_argument(
        "--cleanup-minutes",
        type=int,
        default=None,
        help="Evict messages older than this many minutes after the run",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)",
    )

    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["json", "console"],
        help="Log output format (overrides config)",
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    config = Config(args.config)
    if args.log_level:
        config.set("logging.level", args.log_level)
    if args.log_format:
        config.set("logging.format", args.log_format)

    configure_logging(
        log_level=config.get("logging.level", "INFO"),
        log_format=config.get("logging.format", "console"),
        log_output=config.get("logging.output", "stdout"),
    )

    app = build_application(config)
    demo = MultiProducerDemo(app.service)

    app.start()

    try:
        demo.send_batch(args.count)
        app.broker.flush()

        if not app.consumer_group.wait_until_drained(timeout=args.timeout):
            logger.warning("Consumer group did not drain in time", timeout=args.timeout)

        status = demo.consumer_status()
        print(json.dumps({
            "total": status.total,
            "by_sender": status.by_sender,
            "by_type": status.by_type,
            "workers": app.consumer_group.metrics()["workers"],
        }, indent=2))

        if args.cleanup_minutes is not None:
            deleted = app.service.cleanup(args.cleanup_minutes)
            print(f"Evicted {deleted} messages older than {args.cleanup_minutes} minutes")

    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")

    finally:
        demo.close()
        app.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
