from __future__ import annotations
import logging
import uuid
from typing import Optional

from sqlalchemy import func, insert, select

from deploystack_server.db.manager import Database
from deploystack_server.plugin_runtime.types import (
    DatabaseExtension,
    GlobalSettingsExtension,
    Plugin,
    PluginMeta,
    SettingDefinition,
    SettingGroupDefinition,
)

from . import routes

_log = logging.getLogger(__name__)

PLUGIN_ID = 'example-plugin'
ENTITIES_TABLE = f'{PLUGIN_ID}_example_entities'
GREETING_KEY = 'example_plugin.greeting'

_SEED_ROWS = [
    {'name': 'Example Entity 1', 'description': 'Seeded on first database initialization'},
    {'name': 'Example Entity 2', 'description': 'Seeded on first database initialization'},
]


async def _seed_entities(db: Database) -> None:
    table = db.tables[ENTITIES_TABLE]
    async with db.begin() as conn:
        count = (await conn.execute(select(func.count()).select_from(table))).scalar_one()
        if count:
            return
        await conn.execute(insert(table), [{'id': uuid.uuid4().hex, **row} for row in _SEED_ROWS])
    _log.info("seeded %d example entities", len(_SEED_ROWS))


class ExamplePlugin(Plugin):
    meta = PluginMeta(
        id=PLUGIN_ID,
        name='Example Plugin',
        version='0.1.0',
        description='Demonstrates a plugin table, a database seed, global settings and namespaced routes.',
        author='DeployStack',
    )

    database_extension = DatabaseExtension(
        table_definitions={
            'example_entities': {
                'id': lambda c: c.text().primary_key(),
                'name': lambda c: c.text().not_null(),
                'description': lambda c: c.text(),
                'created_at': lambda c: c.timestamp().not_null().default_now(),
                'updated_at': lambda c: c.timestamp().not_null().default_now(),
            },
        },
        on_database_init=_seed_entities,
    )

    global_settings_extension = GlobalSettingsExtension(
        groups=[
            SettingGroupDefinition(
                'example-plugin', 'Example Plugin', 'Settings contributed by the example plugin', 'puzzle', 100
            ),
        ],
        settings=[
            SettingDefinition(
                GREETING_KEY, 'Hello from the example plugin', 'Greeting returned by /hello',
                group_id='example-plugin',
            ),
            SettingDefinition(
                'example_plugin.api_token', '', 'Token for a hypothetical upstream API',
                encrypted=True, group_id='example-plugin',
            ),
        ],
    )

    def __init__(self) -> None:
        self.db: Optional[Database] = None

    async def initialize(self, db: Optional[Database]) -> None:
        self.db = db
        _log.info("example plugin initialized database=%s", 'yes' if db is not None else 'no')

    async def reinitialize(self, db: Database) -> None:
        self.db = db

    def register_routes(self, route_manager, db: Optional[Database]) -> None:
        routes.register(route_manager, self)

    def shutdown(self) -> None:
        self.db = None
