from __future__ import annotations
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request
from pydantic import BaseModel
from sqlalchemy import select

from deploystack_server.services.global_settings import GlobalSettingsService

if TYPE_CHECKING:
    from .plugin import ExamplePlugin


class EntityOut(BaseModel):
    id: str
    name: str
    description: str | None = None


def register(route_manager, plugin: 'ExamplePlugin') -> None:
    """Mount the example endpoints under ``/plugin/example-plugin/``."""
    from .plugin import ENTITIES_TABLE, GREETING_KEY

    @route_manager.get('/hello')
    async def hello(request: Request):
        message = f'Hello from {plugin.meta.name}'
        if plugin.db is not None:
            service = GlobalSettingsService(plugin.db, request.app.state.encryption)
            message = await service.get_value(GREETING_KEY) or message
        return {'plugin': plugin.meta.id, 'message': message}

    @route_manager.get('/entities', response_model=list[EntityOut])
    async def list_entities():
        if plugin.db is None:
            raise HTTPException(status_code=503, detail='Database not initialized')
        table = plugin.db.tables[ENTITIES_TABLE]
        rows = await plugin.db.fetch_all(select(table.c.id, table.c.name, table.c.description).order_by(table.c.name))
        return [dict(r) for r in rows]
