"""
Dependency injection setup for the application.
Managers live on ``app.state`` (see ``main.create_app``) and reach routes
through these dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from deploystack_server.db.manager import DatabaseManager
from deploystack_server.plugin_runtime.manager import PluginManager
from deploystack_server.services.encryption import EncryptionService
from deploystack_server.services.global_settings import GlobalSettingsService


def get_db_manager(request: Request) -> DatabaseManager:
    return request.app.state.db_manager


def get_plugin_manager(request: Request) -> PluginManager:
    return request.app.state.plugin_manager


def get_encryption(request: Request) -> EncryptionService:
    return request.app.state.encryption


def get_settings_service(
    db_manager: Annotated[DatabaseManager, Depends(get_db_manager)],
    encryption: Annotated[EncryptionService, Depends(get_encryption)],
) -> GlobalSettingsService:
    """Raises ``DatabaseNotInitializedError`` (503) until setup has completed."""
    return GlobalSettingsService(db_manager.get_db(), encryption)


# FastAPI dependency type annotations
DbManagerDep = Annotated[DatabaseManager, Depends(get_db_manager)]
PluginManagerDep = Annotated[PluginManager, Depends(get_plugin_manager)]
EncryptionDep = Annotated[EncryptionService, Depends(get_encryption)]
SettingsServiceDep = Annotated[GlobalSettingsService, Depends(get_settings_service)]
