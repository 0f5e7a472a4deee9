"""Shared settings registration for core and plugin-declared global settings.

Missing groups and keys are created with their defaults. Existing values are
never overwritten; only metadata (group name/description/icon/order, setting
description and group) is refreshed when the definition changed.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from deploystack_server.plugin_runtime.types import SettingDefinition, SettingGroupDefinition
from deploystack_server.services.global_settings import GlobalSettingsService

_log = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    created_groups: List[str] = field(default_factory=list)
    created_settings: List[str] = field(default_factory=list)
    updated_settings: List[str] = field(default_factory=list)
    skipped_settings: List[str] = field(default_factory=list)


async def register_settings(
    service: GlobalSettingsService,
    groups: Iterable[SettingGroupDefinition],
    definitions: Iterable[SettingDefinition],
    *,
    owner: str = 'core',
) -> RegistrationResult:
    result = RegistrationResult()

    for g in groups:
        row = await service.get_group(g.id)
        if row is None:
            await service.create_group(
                g.id, g.name, description=g.description, icon=g.icon, sort_order=g.sort_order
            )
            result.created_groups.append(g.id)
            continue
        if (
            row['name'] != g.name
            or (row['description'] or None) != (g.description or None)
            or (row['icon'] or None) != (g.icon or None)
            or row['sort_order'] != g.sort_order
        ):
            await service.update_group(
                g.id, name=g.name, description=g.description, icon=g.icon, sort_order=g.sort_order
            )

    for d in definitions:
        existing = await service.get(d.key) if not d.encrypted else None
        if d.encrypted:
            # avoid decrypting secrets just to compare metadata
            exists = await service.exists(d.key)
        else:
            exists = existing is not None
        if not exists:
            await service.set(
                d.key,
                d.default_value,
                description=d.description,
                encrypted=d.encrypted,
                group_id=d.group_id,
            )
            result.created_settings.append(d.key)
            continue
        if existing is not None and (
            (existing['description'] or None) == (d.description or None)
            and (existing['group_id'] or None) == (d.group_id or None)
        ):
            result.skipped_settings.append(d.key)
            continue
        await service.update(d.key, description=d.description, group_id=d.group_id)
        result.updated_settings.append(d.key)

    if result.created_groups or result.created_settings:
        _log.info(
            "settings registered owner=%s groups_created=%d settings_created=%d",
            owner, len(result.created_groups), len(result.created_settings),
        )
    return result
