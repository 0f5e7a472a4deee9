"""Plugin contract.

A plugin is a directory holding a ``plugin.yml`` manifest plus a Python module
whose entry class subclasses :class:`Plugin`. The entry class must be
constructible without arguments.

Besides ``initialize`` a plugin may define any of these optional methods;
the manager looks them up by name:

``register_routes(routes, db)``
    ``routes`` is a :class:`~deploystack_server.plugin_runtime.route_manager.PluginRouteManager`
    scoped to ``/plugin/<id>/``. ``db`` may be None.
``reinitialize(db)``
    Called once the database becomes available after startup.
``shutdown()``
    Called on process shutdown.

Every hook may be a plain function or a coroutine function.
"""
from __future__ import annotations
import abc
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

from deploystack_server.db.columns import TableDefinition

if TYPE_CHECKING:
    from deploystack_server.db.manager import Database


@dataclass
class PluginMeta:
    id: str
    name: str
    version: str
    description: str = ''
    author: Optional[str] = None


@dataclass
class DatabaseExtension:
    # table name (without the plugin prefix) -> column definitions
    table_definitions: Dict[str, TableDefinition] = field(default_factory=dict)
    on_database_init: Optional[Callable[['Database'], Union[Awaitable[None], None]]] = None


@dataclass
class SettingGroupDefinition:
    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    sort_order: int = 0


@dataclass
class SettingDefinition:
    key: str
    default_value: str = ''
    description: Optional[str] = None
    encrypted: bool = False
    required: bool = False
    group_id: Optional[str] = None


@dataclass
class GlobalSettingsExtension:
    groups: List[SettingGroupDefinition] = field(default_factory=list)
    settings: List[SettingDefinition] = field(default_factory=list)


@dataclass
class PluginOptions:
    enabled: bool = True
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginConfiguration:
    paths: List[str] = field(default_factory=list)
    plugins: Dict[str, PluginOptions] = field(default_factory=dict)


class Plugin(abc.ABC):
    meta: PluginMeta
    database_extension: Optional[DatabaseExtension] = None
    global_settings_extension: Optional[GlobalSettingsExtension] = None

    @abc.abstractmethod
    def initialize(self, db: Optional['Database']) -> Union[Awaitable[None], None]:
        """Prepare the plugin. ``db`` is None while the database is not set up."""

    def __repr__(self) -> str:
        meta = getattr(self, 'meta', None)
        return f"<Plugin {meta.id if meta else '?'}>"
