"""
KPI rollup worker process entrypoint.

Runs the rollup engine on a fixed interval outside the API process. Use this
instead of the in-process ticker when the API runs with several workers.
"""

from __future__ import annotations

import logging
import os
import signal
import threading

from .core.logging_config import setup_logging
from .services.rollup_scheduler import run_kpi_rollup_loop

logger = logging.getLogger("worker")


def main() -> int:
    setup_logging()
    logger.info("KPI worker booted (pid=%s)", os.getpid())
    stop_event = threading.Event()

    def _stop(signum, frame) -> None:
        logger.info("Signal %s received; stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)
    try:
        run_kpi_rollup_loop(stop_event)
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
