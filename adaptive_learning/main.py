"""
main.py
Service entry point for the adaptive learning engine

Author: Adaptive Learning System
Date: 2024
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from adaptive_learning.core.learning_config import DEFAULT_CONFIG_PATH, LearningConfig, load_yaml
from adaptive_learning.core.learning_engine import LearningEngine
from adaptive_learning.infrastructure.event_bus import EventBus, Events, connect_engine
from adaptive_learning.monitoring.learning_api import LearningAPI
from adaptive_learning.monitoring.prometheus_metrics import LearningMetricsExporter

logger = logging.getLogger(__name__)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None):
    """Stream handler plus an optional file handler"""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


class LearningService:
    """Wires the event bus, engine, exporter and dashboard API together"""

    def __init__(self, raw_config: Dict[str, Any], api_enabled: bool = True):
        self.raw_config = raw_config or {}
        self.config = LearningConfig.from_dict(self.raw_config.get('learning', {}))

        self.event_bus = EventBus()
        self.exporter = LearningMetricsExporter()
        self.engine = LearningEngine(
            self.config,
            event_sink=self.event_bus.emit,
            metrics_exporter=self.exporter
        )
        connect_engine(self.event_bus, self.engine)

        api_config = self.raw_config.get('api', {})
        self.api_enabled = api_enabled and api_config.get('enabled', True)
        self.api_host = api_config.get('host', 'localhost')
        self.api_port = int(api_config.get('port', 8080))
        self.api = LearningAPI(self.engine, self.exporter) if self.api_enabled else None

        self._shutdown_event: Optional[asyncio.Event] = None

    async def start(self):
        """Start all components and run until shutdown"""
        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                logger.debug(f"Signal handlers unavailable for {sig}")

        await self.event_bus.start()
        await self.engine.start()
        if self.api:
            await self.api.start_server(self.api_host, self.api_port)

        logger.info(
            f"Adaptive learning service started (inbound events: {', '.join(Events.INBOUND)})"
        )
        await self._shutdown_event.wait()
        await self.shutdown()

    def _signal_handler(self, signum):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def shutdown(self):
        """Graceful shutdown"""
        logger.info("Initiating graceful shutdown...")
        for name, component in (('api', self.api), ('engine', self.engine), ('event_bus', self.event_bus)):
            if component is None:
                continue
            try:
                await component.stop()
                logger.info(f"Stopped {name}")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")
        logger.info("Shutdown complete")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Adaptive Learning Engine')
    parser.add_argument(
        '--config',
        default=DEFAULT_CONFIG_PATH,
        help='Path to configuration file'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--no-api',
        action='store_true',
        help='Disable dashboard API server'
    )
    args = parser.parse_args()

    try:
        raw_config = load_yaml(args.config)
    except FileNotFoundError:
        setup_logging()
        logger.critical(f"Cannot start without configuration: {args.config}")
        sys.exit(1)

    log_config = raw_config.get('logging', {})
    setup_logging(log_config.get('level', 'INFO'), log_config.get('file'))

    # Set debug logging if requested
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        service = LearningService(raw_config, api_enabled=not args.no_api)
        logger.info(f"Dashboard API: {'ENABLED' if service.api_enabled else 'DISABLED'}")
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.critical(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
