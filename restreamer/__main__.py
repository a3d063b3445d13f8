#!/usr/bin/env python3
"""
Restreamer main entry point.

Allows the restreamer to be run as a module: python3 -m restreamer
"""

import logging
import os
import signal
import sys

from restreamer.config import load_config
from restreamer.service import RestreamService

logger = logging.getLogger("restreamer")


def main() -> int:
    # Set default log level from environment, or INFO if not set
    log_level = os.getenv("RESTREAM_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    # Config errors abort before the HTTP listener opens
    try:
        config = load_config()
    except ValueError:
        return 1

    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    service = None
    try:
        service = RestreamService(config)
        signal.signal(signal.SIGTERM, lambda signum, frame: service.stop())
        service.start()
        return service.run_forever()
    except KeyboardInterrupt:
        logger.info("Restreamer shutdown requested")
        if service is not None:
            service.stop()
        return 0
    except Exception as e:
        logger.error(f"Restreamer failed to start: {e}", exc_info=True)
        if service is not None:
            service.stop()
        return 1


if __name__ == "__main__":
    sys.exit(main())
