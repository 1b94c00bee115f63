"""
Entry point for the CEP definition deployer API.

This script creates the FastAPI application and includes the API
routers. Run with:

    uvicorn cep_deployer.main:app --reload

"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from . import __version__
from .api import api_router
from .core.config import settings, get_app_env
from .core.db import SessionLocal
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .models import Base
from .scripts.run_migrations import run_migrations_to_head
from .services.definitions import build_services
from .services.dispatcher import MessageDispatcher, build_dispatcher


def create_app(
    *,
    session_factory: Optional[sessionmaker] = None,
    dispatcher: Optional[MessageDispatcher] = None,
    dispatch_mode: Optional[str] = None,
) -> FastAPI:
    app = FastAPI(title="CEP Definition Deployer", version=__version__)
    session_factory = session_factory or SessionLocal
    dispatcher = dispatcher or build_dispatcher(settings)
    dispatch_mode = dispatch_mode or settings.dispatch_mode

    app.state.session_factory = session_factory
    app.state.dispatcher = dispatcher
    app.state.dispatch_mode = dispatch_mode
    app.state.definition_services = build_services(session_factory, dispatcher, dispatch_mode=dispatch_mode)
    app.include_router(api_router)

    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        bind = session_factory.kw.get("bind")
        if settings.auto_create_db and bind is not None:
            try:
                Base.metadata.create_all(bind=bind)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if settings.auto_run_migrations:
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        logger.info(
            "Startup complete env=%s transport=%s dispatch_mode=%s",
            env,
            dispatcher.transport,
            dispatch_mode,
        )

    return app


setup_logging()
app = create_app()
