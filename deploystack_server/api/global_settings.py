from __future__ import annotations
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query

from deploystack_server.core.dependencies import SettingsServiceDep
from deploystack_server.core.system_settings import missing_required_settings
from deploystack_server.schemas.global_settings import (
    GlobalSettingGroupOut,
    GlobalSettingOut,
    GlobalSettingWrite,
    SettingsValidationOut,
)
from deploystack_server.services.global_settings import SettingDecryptionError, SettingValidationError

router = APIRouter(prefix='/settings', tags=['settings'])
logger = logging.getLogger(__name__)


@router.get('', response_model=List[GlobalSettingOut])
async def list_settings(service: SettingsServiceDep):
    return await service.get_all()


@router.get('/groups', response_model=List[GlobalSettingGroupOut])
async def list_groups(service: SettingsServiceDep):
    return await service.get_all_groups_with_settings()


@router.get('/search', response_model=List[GlobalSettingOut])
async def search_settings(service: SettingsServiceDep, pattern: str = Query(..., min_length=1)):
    try:
        return await service.search(pattern)
    except SettingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get('/validate', response_model=SettingsValidationOut)
async def validate_settings(service: SettingsServiceDep):
    missing = await missing_required_settings(service)
    return SettingsValidationOut(valid=not missing, missing=missing)


@router.get('/{key}', response_model=GlobalSettingOut)
async def get_setting(key: str, service: SettingsServiceDep):
    try:
        setting = await service.get(key)
    except SettingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except SettingDecryptionError as exc:
        logger.error("%s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    if setting is None:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    return setting


@router.put('/{key}', response_model=GlobalSettingOut)
async def put_setting(key: str, payload: GlobalSettingWrite, service: SettingsServiceDep):
    try:
        return await service.set(
            key,
            payload.value,
            description=payload.description,
            encrypted=payload.encrypted,
            group_id=payload.group_id,
        )
    except SettingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete('/{key}')
async def delete_setting(key: str, service: SettingsServiceDep):
    try:
        removed = await service.delete(key)
    except SettingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not removed:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    return {'success': True, 'key': key}
