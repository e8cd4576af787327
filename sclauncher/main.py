from __future__ import annotations

import asyncio
import logging
import os
import signal

from sclauncher.config import LauncherConfig
from sclauncher.launcher import SauceConnectLauncher

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

logger = logging.getLogger("sclauncher")


def setup_logging(verbose: bool = False) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = os.environ.get("SC_LAUNCHER_LOG_FILE", "")
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


async def main() -> None:
    config = LauncherConfig.from_env()
    setup_logging(config.verbose)
    logger.info("Sauce Connect launcher starting...")

    launcher = SauceConnectLauncher(config)
    stop_event = asyncio.Event()
    startup = asyncio.current_task()
    started = False

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()
        # Abort download or connect; their cleanup runs on cancellation
        if not started and startup is not None:
            startup.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        loop.add_signal_handler(sig, handle_signal)

    try:
        tunnel = await launcher.download_and_run()
    except asyncio.CancelledError:
        logger.info("Interrupted during startup")
        await launcher.kill()
        return
    started = True
    logger.info(
        "Tunnel %s is up (port %s). Press Ctrl+C to stop.",
        tunnel.tunnel_id, tunnel.port,
    )

    # Stop early if sc dies on its own
    tunnel.on_exit(stop_event.set)
    await stop_event.wait()

    logger.info("Shutting down...")
    await tunnel.close()
    logger.info("Sauce Connect stopped.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
