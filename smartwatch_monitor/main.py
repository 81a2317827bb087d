#!/usr/bin/env python3
"""Smartwatch Monitor - Main Entry Point.

This is the main entry point for the smartwatch monitoring system.
It initializes all components and starts the detection loop.

Usage:
    python -m smartwatch_monitor.main [--config CONFIG] [--debug] [--mock]

Or, once installed:
    smartwatch-monitor [options]

The system polls the wearable's sensing API for classification events
and raises an alert the first time a new abnormal event shows up. A
small JSON API lets the user browse notifications, mark them read and
change which categories the server reports.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from typing import Optional

from smartwatch_monitor.alerting import AlertDispatcher
from smartwatch_monitor.config import load_config
from smartwatch_monitor.detection import DetectionLoop
from smartwatch_monitor.event_client import EventSourceClient
from smartwatch_monitor.mocks import MockEventSource
from smartwatch_monitor.watermark_store import WatermarkStore
from smartwatch_monitor.web.app import create_app

logger = logging.getLogger(__name__)


def setup_logging(config, debug: bool = False) -> None:
    """Configure logging based on config settings.

    Args:
        config: Configuration object
        debug: Enable debug mode
    """
    level = logging.DEBUG if debug else getattr(
        logging, config.logging.level.upper(), logging.INFO
    )

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.logging.file:
        log_path = config.resolve_path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.logging.max_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce verbosity of some noisy libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    logger.info(f"Logging configured (level: {logging.getLevelName(level)})")


class MonitorApp:
    """Main application class for Smartwatch Monitor.

    Coordinates all components and manages the application lifecycle.
    """

    def __init__(self, config_path: str, debug: bool = False, mock: bool = False):
        """Initialize the application.

        Args:
            config_path: Path to configuration file
            debug: Enable debug logging
            mock: Force mock mode regardless of config
        """
        self.config_path = config_path
        self.debug = debug
        self.force_mock = mock

        # Components (initialized in start())
        self.config = None
        self.store: Optional[WatermarkStore] = None
        self.client = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.detection_loop: Optional[DetectionLoop] = None
        self.web_app = None
        self._web_thread: Optional[threading.Thread] = None

    async def start(self) -> None:
        """Start the monitoring application."""
        self.config = load_config(self.config_path)

        if self.force_mock:
            self.config.mock_mode = True

        setup_logging(self.config, self.debug)

        logger.info("=" * 50)
        logger.info("Smartwatch Monitor Starting")
        logger.info("=" * 50)
        logger.info(f"Config loaded from: {self.config_path}")
        logger.info(f"Mock mode: {self.config.mock_mode}")

        try:
            await self._initialize_components()
            self._install_signal_handlers()
            if self.config.web.enabled:
                self._start_web_server()
            await self.detection_loop.run()
        finally:
            await self._shutdown()

    async def _initialize_components(self) -> None:
        """Initialize all system components."""
        logger.info("Initializing components...")

        logger.info("  - Watermark Store")
        self.store = WatermarkStore(str(self.config.resolve_path(self.config.database.path)))
        await self.store.initialize()

        logger.info("  - Alert Dispatcher")
        self.dispatcher = AlertDispatcher(self.config)
        await self.dispatcher.initialize()

        logger.info("  - Event Source")
        if self.config.mock_mode:
            self.client = MockEventSource()
        else:
            self.client = EventSourceClient(
                base_url=self.config.source.base_url,
                timeout_seconds=self.config.source.timeout_seconds,
            )

        logger.info("  - Detection Loop")
        self.detection_loop = DetectionLoop(
            client=self.client,
            store=self.store,
            dispatcher=self.dispatcher,
            poll_interval_seconds=self.config.monitor.poll_interval_seconds,
        )

        logger.info("All components initialized")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda s, f: self.stop())

    def _start_web_server(self) -> None:
        """Start the web server in a background thread."""
        host = self.config.web.host
        port = self.config.web.port

        self.web_app = create_app(
            config=self.config,
            event_loop=asyncio.get_running_loop(),
            detection_loop=self.detection_loop,
            store=self.store,
            dispatcher=self.dispatcher,
            client=self.client,
        )

        def run_flask():
            self.web_app.run(
                host=host,
                port=port,
                debug=False,
                use_reloader=False,
                threaded=True,
            )

        self._web_thread = threading.Thread(target=run_flask, daemon=True)
        self._web_thread.start()
        logger.info(f"Web server started on http://{host}:{port}")

    async def _shutdown(self) -> None:
        """Clean shutdown of all components."""
        logger.info("Shutting down...")

        if self.detection_loop:
            self.detection_loop.stop()

        if self.client:
            await self.client.close()

        if self.dispatcher:
            await self.dispatcher.close()

        if self.store:
            await self.store.close()

        logger.info("Shutdown complete")

    def stop(self) -> None:
        """Request application stop."""
        logger.info("Stop requested")
        if self.detection_loop:
            self.detection_loop.stop()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Smartwatch Abnormal Event Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with default config
    smartwatch-monitor

    # Run in debug mode against the mock event source
    smartwatch-monitor --debug --mock

    # Use custom config file
    smartwatch-monitor --config /path/to/config.yaml
        """
    )
    parser.add_argument(
        "--config", "-c",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--mock", "-m",
        action="store_true",
        help="Use the in-memory mock event source"
    )
    args = parser.parse_args()

    if not os.path.exists(args.config):
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    app = MonitorApp(
        config_path=args.config,
        debug=args.debug,
        mock=args.mock,
    )

    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        print("\nInterrupted")
    except Exception as e:
        print(f"Error: {e}")
        if args.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
