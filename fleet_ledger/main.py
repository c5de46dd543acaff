"""
Entry point for the fleet ledger backend.

This module creates the FastAPI application, includes all API routers and
starts the in-process KPI rollup ticker. Run with:

    uvicorn fleet_ledger.main:app --reload

"""

from __future__ import annotations

import logging
import threading

from fastapi import FastAPI

from .api import api_router
from .core.config import env_flag, get_app_env, settings
from .core.db import engine
from .core.errors import log_exception
from .models import Base
from .scripts.run_migrations import run_migrations_to_head
from .services.rollup_scheduler import run_kpi_rollup_loop


def create_app() -> FastAPI:
    app = FastAPI(title="Fleet Ledger Backend", version="0.1.0")
    app.include_router(api_router)
    app.state.kpi_rollup_stop = None
    app.state.kpi_rollup_thread = None

    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if env_flag("AUTO_CREATE_DB", settings.auto_create_db):
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if env_flag("AUTO_RUN_MIGRATIONS", settings.auto_run_migrations):
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if env_flag("ENABLE_KPI_ROLLUP", settings.enable_kpi_rollup):
            stop_event = threading.Event()
            thread = threading.Thread(
                target=run_kpi_rollup_loop,
                args=(stop_event,),
                daemon=True,
                name="kpi-rollup",
            )
            thread.start()
            app.state.kpi_rollup_stop = stop_event
            app.state.kpi_rollup_thread = thread

    @app.on_event("shutdown")
    def _shutdown() -> None:
        stop_event = getattr(app.state, "kpi_rollup_stop", None)
        if stop_event:
            stop_event.set()
        thread = getattr(app.state, "kpi_rollup_thread", None)
        if thread:
            thread.join(timeout=5)

    return app


app = create_app()
