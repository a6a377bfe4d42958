"""
Unit tests for the FLEETWATCH command-line entry point.
"""

import asyncio
import logging
import signal
from unittest.mock import AsyncMock, patch

import pytest

from fleetwatch.main import (
    GracefulShutdown,
    OperatorSignals,
    async_main,
    create_parser,
    main,
)
from tests.conftest import local


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = create_parser().parse_args([])
        assert args.config is None
        assert args.log_level is None
        assert args.dry_run is False

    def test_one_shot_modes_removed(self):
        """Test processing is requested from the running engine, not a new one."""
        for flag in ("--status", "--force-process"):
            with pytest.raises(SystemExit):
                create_parser().parse_args([flag])

    def test_log_level_choices(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--log-level", "LOUD"])


class TestAsyncMain:
    """Tests for the run loop against an injected engine."""

    @pytest.mark.asyncio
    async def test_run_until_shutdown(self, config, engine):
        args = create_parser().parse_args([])
        shutdown = GracefulShutdown()
        shutdown.get_shutdown_event().set()

        assert await async_main(args, config, shutdown=shutdown, engine=engine) == 0
        assert engine.scheduler.is_running is False


class TestOperatorSignals:
    """Tests for operator requests against the running engine."""

    @pytest.mark.asyncio
    async def test_request_processing_drains_running_engine(self, engine, clock, email_channel):
        clock.set(local(2024, 6, 12, 9, 30))
        engine.on_connection_report("5", False)
        clock.set(local(2024, 6, 12, 10, 5))
        operator = OperatorSignals(engine)

        await operator.request_processing()

        assert len(email_channel.sends) == 1
        assert engine.metrics.process_runs == 1
        assert len(engine.buckets) == 0

    @pytest.mark.asyncio
    async def test_failed_processing_is_logged(self, engine, caplog):
        caplog.set_level(logging.INFO, logger="fleetwatch.main")
        operator = OperatorSignals(engine)

        with patch.object(engine.processor, "run", new=AsyncMock(side_effect=RuntimeError("boom"))):
            await operator.request_processing()
            await operator.wait()

        assert "processing failed: boom" in caplog.text
        assert "boom" in engine.metrics.last_error

    def test_log_status(self, engine, caplog):
        caplog.set_level(logging.INFO, logger="fleetwatch.main")
        engine.on_connection_report("5", False)

        OperatorSignals(engine).log_status()

        assert "Engine status" in caplog.text
        assert '"offline": 1' in caplog.text

    @pytest.mark.asyncio
    async def test_install_and_remove(self, engine):
        loop = asyncio.get_running_loop()
        operator = OperatorSignals(engine)

        operator.install(loop)
        assert signal.SIGUSR1 in operator._installed
        operator.remove(loop)

        assert operator._installed == []


class TestMain:
    """Tests for the synchronous entry point."""

    def test_missing_config_file(self):
        with patch("sys.argv", ["fleetwatch", "--config", "/nonexistent/fleetwatch.yaml"]):
            assert main() == 1

    def test_dry_run(self, capsys):
        with patch("sys.argv", ["fleetwatch", "--dry-run"]):
            assert main() == 0
        assert "Configuration is valid" in capsys.readouterr().out


class TestGracefulShutdown:
    """Tests for signal handling."""

    def test_signal_sets_event(self):
        shutdown = GracefulShutdown()
        event = shutdown.get_shutdown_event()

        shutdown._handle_signal(signal.SIGTERM, None)

        assert shutdown.shutdown_requested is True
        assert event.is_set()

    def test_second_signal_exits(self):
        shutdown = GracefulShutdown()
        shutdown._handle_signal(signal.SIGINT, None)
        with pytest.raises(SystemExit):
            shutdown._handle_signal(signal.SIGINT, None)
