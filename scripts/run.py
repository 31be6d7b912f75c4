#!/usr/bin/env python3
"""Main entrypoint — wires all components and runs the monitoring loop.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from pulsewatch.core.config import load_settings
from pulsewatch.core.exceptions import ConfigurationError
from pulsewatch.core.logging import setup_logging
from pulsewatch.core.types import Observation
from pulsewatch.factory import create_pulse_stack

logger = structlog.stdlib.get_logger()


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    try:
        settings = load_settings(args.config)
    except ConfigurationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    setup_logging(level=args.log_level, config=settings.logging)

    enabled = [t for t in settings.targets if t.enabled]
    if not enabled:
        logger.error("no_targets_enabled")
        print(
            "No targets enabled. Add at least one entry under `targets:` "
            "in config/settings.yaml.",
            file=sys.stderr,
        )
        return 1

    stack = create_pulse_stack(settings)

    def _log_observation(observation: Observation) -> None:
        logger.info(
            "pulse_observed",
            target_id=observation.target_id,
            state=observation.state,
            elapsed_ms=observation.elapsed_ms,
            error=observation.error,
        )

    stack.scheduler.on_observation(_log_observation)

    await stack.start()
    logger.info(
        "pulsewatch_running",
        targets=len(enabled),
        subscriptions=len(settings.subscriptions),
        interval_secs=settings.pulse.interval_secs,
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("pulsewatch_shutting_down")
    await stack.stop()

    logger.info(
        "pulsewatch_stopped",
        stored=stack.ingestion.stored,
        failed_appends=stack.ingestion.failed_appends,
        dropped_on_shutdown=stack.ingestion.dropped_on_shutdown,
        webhooks_delivered=stack.dispatcher.delivered,
        webhooks_failed=stack.dispatcher.failed,
        webhooks_dropped=stack.dispatcher.dropped,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the pulsewatch uptime monitor.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
