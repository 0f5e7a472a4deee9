from __future__ import annotations
import logging
from typing import List

from fastapi import APIRouter, HTTPException

from deploystack_server.core.dependencies import PluginManagerDep
from deploystack_server.schemas.plugins import PluginOut

router = APIRouter(prefix='/plugins', tags=['plugins'])
logger = logging.getLogger(__name__)


@router.get('', response_model=List[PluginOut])
async def list_plugins(plugin_manager: PluginManagerDep):
    return plugin_manager.describe()


@router.get('/{plugin_id}', response_model=PluginOut)
async def get_plugin(plugin_id: str, plugin_manager: PluginManagerDep):
    for row in plugin_manager.describe():
        if row['id'] == plugin_id:
            return row
    raise HTTPException(status_code=404, detail=f"Plugin '{plugin_id}' not found")
