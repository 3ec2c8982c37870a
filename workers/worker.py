"""Worker for the document delivery service.

Runs the whole service on one event loop: the transport session and its
timers, the scheduled delivery cycles, the daily report, the retention
sweep and (unless disabled) the status dashboard.

Run with --once to run a single delivery cycle and exit.
Run with --no-dashboard to skip the HTTP dashboard.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api.server import create_app
from core.config import ServiceConfig, load_config
from core.observability.logging import configure_logging
from workers.service import DeliveryService

logger = logging.getLogger(__name__)


async def run_once(service: DeliveryService) -> int:
    """Start the session, run one cycle, stop. Returns a process exit code."""
    if not await service.source.connect():
        logger.error("ERP connection failed")
        return 1
    try:
        if not await service.start_session():
            return 1
        result = await service.orchestrator.run_cycle()
        logger.info(
            f"Cycle {result.cycle_id}: {len(result.delivered)} delivered, "
            f"{len(result.failed)} failed, halted={result.halted}"
        )
        return 0 if result.error is None else 1
    finally:
        await service.supervisor.stop()
        await service.source.disconnect()


async def run_service(config: ServiceConfig, dashboard: bool = True) -> None:
    """Start the service and run until interrupted."""
    service = DeliveryService(config)
    stop_event = asyncio.Event()

    server = None
    if dashboard and config.dashboard.enabled:
        app = create_app(service)
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=config.dashboard.host,
            port=config.dashboard.port,
            log_level="warning",
        ))
    else:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass  # Windows

    await service.start()
    try:
        if server is not None:
            logger.info(f"Dashboard on http://{config.dashboard.host}:{config.dashboard.port}")
            # uvicorn handles SIGINT/SIGTERM and returns on shutdown
            await server.serve()
        else:
            await stop_event.wait()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        await service.stop()


def main():
    """Entry point for the worker with CLI args."""
    parser = argparse.ArgumentParser(description="Document delivery worker")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single delivery cycle and exit",
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Do not serve the status dashboard",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Log as JSON lines",
    )

    args = parser.parse_args()
    config = load_config()
    configure_logging(level=config.log_level, json_format=args.log_json or config.log_json)

    if args.once:
        sys.exit(asyncio.run(run_once(DeliveryService(config))))

    try:
        asyncio.run(run_service(config, dashboard=not args.no_dashboard))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
