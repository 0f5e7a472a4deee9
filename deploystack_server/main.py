from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deploystack_server.api import db as db_router
from deploystack_server.api import global_settings as settings_router
from deploystack_server.api import plugins as plugins_router
from deploystack_server.core.config import settings
from deploystack_server.core.logging_config import configure_logging
from deploystack_server.db.errors import (
    ConnectionNotEstablishedError,
    DatabaseNotInitializedError,
    SchemaNotGeneratedError,
)
from deploystack_server.db.manager import DatabaseManager
from deploystack_server.plugin_runtime.manager import PluginManager
from deploystack_server.services.encryption import EncryptionService
from deploystack_server.services.startup import attach_database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Discover plugins, bring the database up when a selection exists, start plugins.

    A failed or missing database never stops startup: ``/db/status`` and
    ``/db/setup`` stay reachable and plugins initialize without a database.
    """
    configure_logging(settings.log_level)
    db_manager: DatabaseManager = app.state.db_manager
    plugin_manager: PluginManager = app.state.plugin_manager
    if app.state.encryption is None:
        app.state.encryption = EncryptionService.from_settings(settings.encryption_secret, settings.data_dir)

    await plugin_manager.discover_plugins()
    db_manager.register_plugin_tables(plugin_manager.get_all_plugins())

    try:
        ready = await db_manager.initialize()
    except Exception:
        logger.exception("database initialization failed; continuing without a database")
        ready = False

    if ready:
        try:
            await attach_database(db_manager, plugin_manager, app.state.encryption)
        except Exception:
            logger.exception("post-initialization database steps failed")
    else:
        logger.info("database not available; POST /db/setup to configure it")

    await plugin_manager.initialize_plugins()
    logger.info("startup complete plugins=%d db_initialized=%s", len(plugin_manager.get_all_plugins()), db_manager.initialized)

    yield

    await plugin_manager.shutdown_plugins()
    await db_manager.close()


def create_app(
    db_manager: DatabaseManager | None = None,
    plugin_manager: PluginManager | None = None,
    encryption: EncryptionService | None = None,
) -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    app.state.db_manager = db_manager or DatabaseManager()
    app.state.plugin_manager = plugin_manager or PluginManager()
    app.state.encryption = encryption
    app.state.plugin_manager.set_app(app)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("validation error url=%s errors=%s", request.url, exc.errors())
        return JSONResponse(status_code=422, content={'detail': exc.errors()})

    async def database_unavailable_handler(request: Request, exc: Exception):
        logger.debug("database unavailable for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={'detail': 'Database not initialized'})

    for exc_type in (DatabaseNotInitializedError, SchemaNotGeneratedError, ConnectionNotEstablishedError):
        app.add_exception_handler(exc_type, database_unavailable_handler)

    # Routers
    app.include_router(db_router.router)
    app.include_router(plugins_router.router)
    app.include_router(settings_router.router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    @app.get('/')
    async def root():
        return {'status': 'ok', 'app': settings.app_name, 'version': settings.version}

    return app


app = create_app()
