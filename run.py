"""
Application entry point
"""
import logging
import signal
import sys

import uvicorn

from policylens.core.config import settings


def signal_handler(signum, frame):
    """Clean signal handler"""
    sys.exit(0)


if __name__ == "__main__":
    # Register signal handlers for clean shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logging.basicConfig(
        level=logging.DEBUG if settings.debug_mode else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "policylens.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug_mode,  # Only reload in debug mode
        log_level="info" if settings.debug_mode else "warning",
        access_log=settings.debug_mode
    )
