from __future__ import annotations
import logging

from deploystack_server.core.system_settings import seed_system_settings
from deploystack_server.db.manager import DatabaseManager
from deploystack_server.plugin_runtime.manager import PluginManager
from deploystack_server.services.encryption import EncryptionService
from deploystack_server.services.global_settings import GlobalSettingsService

_log = logging.getLogger(__name__)


async def attach_database(
    db_manager: DatabaseManager,
    plugin_manager: PluginManager,
    encryption: EncryptionService,
) -> None:
    """Post-initialization steps shared by startup and ``/db/setup``.

    Creates missing plugin tables, runs plugin database seeds, seeds core and
    plugin global settings, then hands the database to the plugin manager.
    """
    db = db_manager.get_db()
    plugins = plugin_manager.get_all_plugins()
    await db_manager.create_plugin_tables()
    await db_manager.initialize_plugin_databases(db, plugins)

    service = GlobalSettingsService(db, encryption)
    try:
        await seed_system_settings(service)
    except Exception:
        _log.exception("core settings seeding failed")
    await plugin_manager.register_plugin_settings(service)

    plugin_manager.set_database(db)
