"""
In-process ticker for the KPI rollup engine.
"""

from __future__ import annotations

import logging
import threading

from ..core.config import settings
from ..core.errors import guarded_call
from .kpi_rollup import run_kpi_rollup


def rollup_interval_sec() -> int:
    return max(30, int(settings.kpi_rollup_interval_sec))


def run_kpi_rollup_loop(stop_event: threading.Event, session_factory=None) -> None:
    logger = logging.getLogger("KpiRollupTicker")
    interval_sec = rollup_interval_sec()
    logger.info("KPI rollup ticker started (interval=%ss)", interval_sec)
    while not stop_event.is_set():
        report = guarded_call("KPI rollup cycle", lambda: run_kpi_rollup(session_factory), logger=logger)
        if report is not None and report.retry_ids:
            logger.warning("KPI rollup tenants pending retry: %s", report.retry_ids)
        stop_event.wait(interval_sec)
    logger.info("KPI rollup ticker stopped")
