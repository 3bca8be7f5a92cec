"""Main entry point for livewatch."""

import asyncio
import signal

from prometheus_client import start_http_server

from . import __version__
from .config import LivewatchSettings
from .monitors import MonitoringController
from .utils import setup_logging, start_health_server, stop_health_server


async def run(settings: LivewatchSettings) -> None:
    """Run the service until SIGINT or SIGTERM."""
    logger = setup_logging(settings.log_level, settings.log_format)
    logger.info("Starting livewatch", version=__version__, data_dir=str(settings.data_dir))

    controller = MonitoringController.from_settings(settings)

    # Start Prometheus metrics server
    if settings.metrics_enabled:
        start_http_server(settings.metrics_port)
        logger.info("Started Prometheus metrics server", port=settings.metrics_port)

    await start_health_server(settings.health_port, controller)
    logger.info("Started health check server", port=settings.health_port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await controller.start()
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await stop_health_server()
        await controller.shutdown()
        logger.info("livewatch stopped")


def main() -> None:
    """Console script entry point."""
    asyncio.run(run(LivewatchSettings()))


if __name__ == "__main__":
    main()
