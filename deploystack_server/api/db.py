from __future__ import annotations
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from deploystack_server.core.config import settings
from deploystack_server.core.dependencies import DbManagerDep, EncryptionDep, PluginManagerDep
from deploystack_server.db.config_store import DbConfig
from deploystack_server.schemas.database import DbSetupRequest, DbSetupResponse, DbStatusResponse
from deploystack_server.services.startup import attach_database

router = APIRouter(prefix='/db', tags=['database'])
logger = logging.getLogger(__name__)


@router.get('/status', response_model=DbStatusResponse)
async def db_status(db_manager: DbManagerDep):
    return db_manager.get_status()


@router.post('/setup', response_model=DbSetupResponse)
async def db_setup(
    payload: DbSetupRequest,
    db_manager: DbManagerDep,
    plugin_manager: PluginManagerDep,
    encryption: EncryptionDep,
):
    """Persist the backend selection and bring the database up.

    Repeating the call once the database is up changes nothing and answers
    with ``already_configured``. Concurrent calls are serialized: a second
    caller waits for the first to finish, then sees the database up.
    """
    async with db_manager.setup_lock:
        return await _run_setup(payload, db_manager, plugin_manager, encryption)


async def _run_setup(payload: DbSetupRequest, db_manager, plugin_manager, encryption):
    if db_manager.configured and db_manager.initialized:
        logger.warning("setup requested but the database is already configured")
        return DbSetupResponse(
            success=True,
            message='Database is already configured and initialized.',
            already_configured=True,
        )

    config = DbConfig(
        backend_kind=payload.backend_kind,
        connection_path=payload.connection_path or settings.default_connection_path,
    )
    try:
        ok = await db_manager.setup_new_database(config)
    except Exception as exc:
        logger.exception("database setup failed")
        return JSONResponse(
            status_code=500,
            content={'success': False, 'message': f'Database setup failed: {exc}'},
        )
    if not ok:
        return DbSetupResponse(
            success=False,
            message='Database could not be initialized; setup is still required.',
            setup_required=True,
        )

    try:
        await attach_database(db_manager, plugin_manager, encryption)
        touched = await plugin_manager.reinitialize_plugins_with_database()
    except Exception as exc:
        logger.exception("post-setup plugin initialization failed")
        return JSONResponse(
            status_code=500,
            content={'success': False, 'message': f'Plugin initialization after setup failed: {exc}'},
        )
    logger.info("database setup complete plugins_reinitialized=%d", len(touched))
    return DbSetupResponse(success=True, message='Database setup completed successfully.')
