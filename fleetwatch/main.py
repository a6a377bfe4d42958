"""
FLEETWATCH Application Entry Point

Handles command-line arguments, configuration loading, signal handling and
the engine lifecycle.

Usage:
    fleetwatch                          # Run with default config
    fleetwatch --config /path/to/config.yaml
    fleetwatch --log-level DEBUG
    fleetwatch --dry-run                # Validate config without starting

A running engine also answers:
    kill -USR1 <pid>                    # Drain closed hour windows now
    kill -USR2 <pid>                    # Log engine status as JSON

Entry Points:
    - CLI: `fleetwatch` command (via pyproject.toml)
    - Direct: `python -m fleetwatch.main`
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import TYPE_CHECKING

from fleetwatch import __version__
from fleetwatch.config import FleetwatchConfig, load_config
from fleetwatch.engine import AlertEngine, create_engine
from fleetwatch.exceptions import ConfigurationError, FleetwatchError
from fleetwatch.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from types import FrameType

__all__ = ["main", "async_main", "create_parser"]

logger = get_logger(__name__)


# =============================================================================
# Argument Parser
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="fleetwatch",
        description="FLEETWATCH sensor alert notification engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        metavar="PATH",
        help="Path to configuration file (default: auto-discover)",
    )
    parser.add_argument(
        "-l",
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Set logging level (overrides config file)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        metavar="PATH",
        help="Path to log file (overrides config file)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting the engine",
    )

    return parser


# =============================================================================
# Signal Handlers
# =============================================================================


class GracefulShutdown:
    """Turns SIGINT/SIGTERM into an asyncio event the main loop waits on."""

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self) -> None:
        self._shutdown_requested = False
        self._shutdown_event: asyncio.Event | None = None
        self._previous: dict[int, signal.Handlers] = {}

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def install_handlers(self) -> None:
        for sig in self.SIGNALS:
            self._previous[sig] = signal.signal(sig, self._handle_signal)

    def restore_handlers(self) -> None:
        while self._previous:
            sig, handler = self._previous.popitem()
            signal.signal(sig, handler)

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        if self._shutdown_requested:
            logger.warning(f"{name} received twice, exiting without draining")
            sys.exit(1)

        logger.info(f"{name} received, stopping the engine")
        self._shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def get_shutdown_event(self) -> asyncio.Event:
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        return self._shutdown_event


class OperatorSignals:
    """
    Operator requests against the running engine.

    SIGUSR1 drains closed hour windows now; SIGUSR2 logs get_status().
    Handlers run on the event loop, so they may touch engine state directly.
    """

    SIGNALS = ("SIGUSR1", "SIGUSR2")

    def __init__(self, engine: AlertEngine) -> None:
        self.engine = engine
        self._tasks: set[asyncio.Task] = set()
        self._installed: list[int] = []

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        handlers = {"SIGUSR1": self.request_processing, "SIGUSR2": self.log_status}
        for name in self.SIGNALS:
            sig = getattr(signal, name, None)
            if sig is None:
                logger.warning(f"{name} not available on this platform")
                continue
            try:
                loop.add_signal_handler(sig, handlers[name])
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"Cannot install {name} handler: {e}")
                continue
            self._installed.append(sig)

    def remove(self, loop: asyncio.AbstractEventLoop) -> None:
        while self._installed:
            loop.remove_signal_handler(self._installed.pop())

    def request_processing(self) -> asyncio.Task:
        logger.info("Processing requested by operator")
        task = asyncio.ensure_future(self._process())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process(self) -> None:
        try:
            report = await self.engine.force_process()
        except Exception as e:
            # Already recorded in metrics and the error log
            logger.error(f"Operator-requested processing failed: {e}")
            return
        logger.info(f"Operator-requested processing: {json.dumps(report.to_dict())}")

    def log_status(self) -> None:
        logger.info(f"Engine status: {json.dumps(self.engine.get_status())}")

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


# =============================================================================
# Main Entry Points
# =============================================================================


def print_banner(config: FleetwatchConfig) -> None:
    email = "configured" if config.email.is_configured else "not configured"
    sms = "configured" if config.sms.is_configured else "not configured"
    print(f"FLEETWATCH v{__version__} - {config.site.name}")
    print(f"  Timezone: {config.site.timezone}")
    print(f"  Email: {email}  SMS: {sms}")
    print(f"  State DB: {config.state.db_path}")


async def async_main(
    args: argparse.Namespace,
    config: FleetwatchConfig,
    shutdown: GracefulShutdown | None = None,
    engine: AlertEngine | None = None,
) -> int:
    """Run the engine until a shutdown signal arrives.

    Returns:
        Exit code (0 for success)
    """
    engine = engine or create_engine(config)
    engine.initialize()

    shutdown = shutdown or GracefulShutdown()
    shutdown_event = shutdown.get_shutdown_event()
    loop = asyncio.get_running_loop()
    operator = OperatorSignals(engine)
    operator.install(loop)

    try:
        await engine.start()
        logger.info("Alert engine running. Press Ctrl+C to stop.")
        await shutdown_event.wait()
        logger.info("Shutdown signal received, stopping engine...")
    finally:
        operator.remove(loop)
        await operator.wait()
        await engine.stop()
    return 0


def main() -> int:
    """Main entry point for the FLEETWATCH application."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(log_level=args.log_level or "INFO")
    logger.info(f"FLEETWATCH v{__version__} starting...")

    try:
        config = load_config(args.config)
        logger.info("Configuration loaded successfully")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(
        log_level=args.log_level or config.log_level,
        log_file=args.log_file or config.log_file,
    )

    if args.dry_run:
        print_banner(config)
        logger.info("Dry run mode - configuration valid, exiting")
        print("\nConfiguration is valid")
        return 0

    shutdown = GracefulShutdown()
    shutdown.install_handlers()

    try:
        return asyncio.run(async_main(args, config, shutdown))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except FleetwatchError as e:
        logger.error(f"FLEETWATCH error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        shutdown.restore_handlers()
        logger.info("FLEETWATCH shutdown complete")


if __name__ == "__main__":
    sys.exit(main())
