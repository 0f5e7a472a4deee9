"""Plugin discovery, isolation and lifecycle."""

import logging

import pytest
from fastapi import FastAPI

from conftest import TEST_PLUGINS_DIR, write_plugin
from deploystack_server.plugin_runtime.errors import (
    PluginDuplicateError,
    PluginLoadError,
    PluginNotFoundError,
)
from deploystack_server.plugin_runtime.manager import PluginManager
from deploystack_server.plugin_runtime.types import Plugin, PluginConfiguration, PluginMeta, PluginOptions
from deploystack_server.services.global_settings import GlobalSettingsService

MINIMAL_SOURCE = '''
from deploystack_server.plugin_runtime.types import Plugin


class Plugin_(Plugin):
    def initialize(self, db):
        pass

Plugin = Plugin_
'''


def manager_for(*paths, plugins=None, app=None):
    config = PluginConfiguration(paths=[str(p) for p in paths], plugins=plugins or {})
    return PluginManager(config, app=app or FastAPI(), backend_version='1.0.0')


class StaticPlugin(Plugin):
    meta = PluginMeta(id='static', name='Static', version='1.0.0')

    def __init__(self):
        self.db_seen = 'unset'

    def initialize(self, db):
        self.db_seen = db


class TestDiscovery:

    @pytest.mark.asyncio
    async def test_discovers_fixture_plugins(self):
        manager = manager_for(TEST_PLUGINS_DIR)
        loaded = await manager.discover_plugins()
        assert set(loaded) == {'basic-plugin', 'db-plugin', 'failing-plugin'}
        assert manager.get_plugin('basic-plugin').meta.name == 'Basic Test Plugin'

    @pytest.mark.asyncio
    async def test_meta_filled_from_manifest(self):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        meta = manager.get_plugin('db-plugin').meta
        assert (meta.id, meta.name, meta.version) == ('db-plugin', 'Database Test Plugin', '1.0.0')

    @pytest.mark.asyncio
    async def test_database_extensions(self):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        assert [p.meta.id for p in manager.get_database_extensions()] == ['db-plugin']

    @pytest.mark.asyncio
    async def test_missing_root_is_created(self, tmp_path):
        root = tmp_path / 'not-yet'
        manager = manager_for(root)
        assert await manager.discover_plugins() == []
        assert root.is_dir()

    @pytest.mark.asyncio
    async def test_skips_dirs_without_manifest_and_hidden_dirs(self, tmp_path):
        (tmp_path / 'no_manifest').mkdir()
        write_plugin(tmp_path, '_private', 'id: private\nversion: 1.0.0\n', MINIMAL_SOURCE)
        write_plugin(tmp_path, 'ok', 'id: ok\nversion: 1.0.0\n', MINIMAL_SOURCE)
        manager = manager_for(tmp_path)
        assert await manager.discover_plugins() == ['ok']
        assert manager.errors == {}

    @pytest.mark.asyncio
    async def test_broken_plugin_does_not_block_others(self, tmp_path):
        write_plugin(tmp_path, 'a_broken', 'id: broken\nversion: 1.0.0\n', 'raise ImportError("nope")\n')
        write_plugin(tmp_path, 'b_bad_manifest', 'id: [unclosed\n')
        write_plugin(tmp_path, 'c_ok', 'id: fine\nversion: 1.0.0\n', MINIMAL_SOURCE)
        manager = manager_for(tmp_path)
        assert await manager.discover_plugins() == ['fine']
        assert set(manager.errors) == {'a_broken', 'b_bad_manifest'}

    @pytest.mark.asyncio
    async def test_relative_imports_inside_plugin(self, tmp_path):
        directory = write_plugin(tmp_path, 'rel', 'id: rel\nversion: 1.0.0\n', '''
from deploystack_server.plugin_runtime.types import Plugin as Base
from .helper import GREETING


class Plugin(Base):
    greeting = GREETING

    def initialize(self, db):
        pass
''')
        (directory / 'helper.py').write_text("GREETING = 'hi'\n", encoding='utf-8')
        manager = manager_for(tmp_path)
        await manager.discover_plugins()
        assert manager.get_plugin('rel').greeting == 'hi'


class TestLoadErrors:

    @pytest.mark.asyncio
    async def test_duplicate_id(self, tmp_path):
        write_plugin(tmp_path / 'one', 'dup', 'id: dup\nversion: 1.0.0\n', MINIMAL_SOURCE)
        write_plugin(tmp_path / 'two', 'dup', 'id: dup\nversion: 2.0.0\n', MINIMAL_SOURCE)
        manager = manager_for(tmp_path / 'one', tmp_path / 'two')
        await manager.load_plugin(tmp_path / 'one' / 'dup')
        with pytest.raises(PluginDuplicateError):
            await manager.load_plugin(tmp_path / 'two' / 'dup')
        assert manager.get_plugin('dup').meta.version == '1.0.0'

    @pytest.mark.asyncio
    async def test_entry_class_must_subclass_plugin(self, tmp_path):
        write_plugin(tmp_path, 'notplugin', 'id: notplugin\nversion: 1.0.0\n', 'class Plugin:\n    pass\n')
        with pytest.raises(PluginLoadError):
            await manager_for(tmp_path).load_plugin(tmp_path / 'notplugin')

    @pytest.mark.asyncio
    async def test_missing_entry_class(self, tmp_path):
        write_plugin(tmp_path, 'noclass', 'id: noclass\nversion: 1.0.0\nentry_point: plugin:Missing\n', MINIMAL_SOURCE)
        with pytest.raises(PluginLoadError):
            await manager_for(tmp_path).load_plugin(tmp_path / 'noclass')

    @pytest.mark.asyncio
    async def test_class_id_must_match_manifest(self, tmp_path):
        source = '''
from deploystack_server.plugin_runtime.types import Plugin as Base, PluginMeta


class Plugin(Base):
    meta = PluginMeta(id='other', name='Other', version='1.0.0')

    def initialize(self, db):
        pass
'''
        write_plugin(tmp_path, 'mismatch', 'id: mismatch\nversion: 1.0.0\n', source)
        with pytest.raises(PluginLoadError):
            await manager_for(tmp_path).load_plugin(tmp_path / 'mismatch')

    @pytest.mark.asyncio
    async def test_required_backend_not_met(self, tmp_path):
        write_plugin(tmp_path, 'future', "id: future\nversion: 1.0.0\nrequired_backend: '>=99'\n", MINIMAL_SOURCE)
        with pytest.raises(PluginLoadError, match='requires backend'):
            await manager_for(tmp_path).load_plugin(tmp_path / 'future')

    @pytest.mark.asyncio
    async def test_manifest_without_version(self, tmp_path):
        write_plugin(tmp_path, 'nover', 'id: nover\n', MINIMAL_SOURCE)
        with pytest.raises(PluginLoadError):
            await manager_for(tmp_path).load_plugin(tmp_path / 'nover')


class TestLookup:

    def test_get_plugin_not_found(self):
        with pytest.raises(PluginNotFoundError):
            manager_for().get_plugin('ghost')

    def test_register_static_plugin(self):
        manager = manager_for()
        manager.register_plugin(StaticPlugin())
        assert manager.get_plugin('static').meta.name == 'Static'
        with pytest.raises(PluginDuplicateError):
            manager.register_plugin(StaticPlugin())

    def test_options(self):
        manager = manager_for(plugins={'x': PluginOptions(enabled=False, config={'k': 1})})
        assert manager.is_plugin_enabled('x') is False
        assert manager.is_plugin_enabled('unknown') is True
        assert manager.get_plugin_config('x') == {'k': 1}
        assert manager.get_plugin_config('unknown') is None

    def test_add_plugin_path_deduplicates(self, tmp_path):
        manager = manager_for(tmp_path)
        manager.add_plugin_path(tmp_path)
        assert manager.plugin_paths == [tmp_path]

    @pytest.mark.asyncio
    async def test_disabled_plugin_is_not_registered(self):
        manager = manager_for(TEST_PLUGINS_DIR, plugins={'basic-plugin': PluginOptions(enabled=False)})
        loaded = await manager.discover_plugins()
        assert 'basic-plugin' not in loaded
        assert [p.meta.id for p in manager.get_disabled_plugins()] == ['basic-plugin']
        with pytest.raises(PluginNotFoundError):
            manager.get_plugin('basic-plugin')
        row = next(r for r in manager.describe() if r['id'] == 'basic-plugin')
        assert row['enabled'] is False


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_failing_plugin_is_isolated(self, caplog):
        """One plugin's initialize error leaves the others initialized with routes."""
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        with caplog.at_level(logging.ERROR):
            await manager.initialize_plugins()

        assert manager.is_plugin_initialized('basic-plugin')
        assert manager.is_plugin_initialized('db-plugin')
        assert not manager.is_plugin_initialized('failing-plugin')
        assert 'initialize exploded' in manager.errors['failing-plugin']
        assert 'basic-plugin' in manager.route_managers
        assert 'failing-plugin' not in manager.route_managers
        assert any('failing-plugin' in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_initialize_runs_once(self):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        await manager.initialize_plugins()
        await manager.initialize_plugins()
        assert manager.get_plugin('basic-plugin').initialize_calls == [None]

    @pytest.mark.asyncio
    async def test_static_plugin_initialized_with_database(self):
        manager = manager_for()
        plugin = StaticPlugin()
        manager.register_plugin(plugin)
        sentinel = object()
        manager.set_database(sentinel)
        await manager.initialize_plugins()
        assert plugin.db_seen is sentinel

    @pytest.mark.asyncio
    async def test_reinitialize_only_database_aware_plugins(self, ready_db_manager):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        await manager.initialize_plugins()
        db = ready_db_manager.get_db()

        touched = await manager.reinitialize_plugins_with_database(db)

        assert touched == ['db-plugin']
        assert manager.get_plugin('db-plugin').reinitialize_calls == [db]
        assert manager.get_plugin('basic-plugin').initialize_calls == [None]
        assert manager.database is db

    @pytest.mark.asyncio
    async def test_reinitialize_without_database(self, caplog):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        with caplog.at_level(logging.WARNING):
            assert await manager.reinitialize_plugins_with_database() == []
        assert any('no database' in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_extension_only_plugin_gets_initialize_again(self, tmp_path, ready_db_manager):
        source = '''
from deploystack_server.plugin_runtime.types import DatabaseExtension, Plugin as Base


class Plugin(Base):
    database_extension = DatabaseExtension()

    def __init__(self):
        self.seen = []

    def initialize(self, db):
        self.seen.append(db)
'''
        write_plugin(tmp_path, 'extonly', 'id: extonly\nversion: 1.0.0\n', source)
        manager = manager_for(tmp_path)
        await manager.discover_plugins()
        await manager.initialize_plugins()
        db = ready_db_manager.get_db()
        assert await manager.reinitialize_plugins_with_database(db) == ['extonly']
        assert manager.get_plugin('extonly').seen == [None, db]

    @pytest.mark.asyncio
    async def test_shutdown(self):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        await manager.initialize_plugins()
        await manager.shutdown_plugins()
        assert manager.get_plugin('basic-plugin').shutdown_called is True
        assert not manager.is_plugin_initialized('basic-plugin')

    @pytest.mark.asyncio
    async def test_describe(self):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        await manager.initialize_plugins()
        rows = {r['id']: r for r in manager.describe()}
        assert rows['basic-plugin']['route_namespace'] == '/plugin/basic-plugin'
        assert rows['basic-plugin']['initialized'] is True
        assert rows['db-plugin']['has_database_extension'] is True
        assert rows['failing-plugin']['error']
        assert rows['failing-plugin']['route_namespace'] is None


class TestPluginSettings:

    @pytest.mark.asyncio
    async def test_settings_extension_registered_and_preserved(self, ready_db_manager, encryption):
        manager = manager_for(TEST_PLUGINS_DIR)
        await manager.discover_plugins()
        service = GlobalSettingsService(ready_db_manager.get_db(), encryption)

        results = await manager.register_plugin_settings(service)
        assert sorted(results['db-plugin'].created_settings) == ['db_plugin.mode', 'db_plugin.secret']
        assert (await service.get('db_plugin.secret'))['value'] == 's3cret'
        assert (await service.get_group('db-plugin'))['name'] == 'Database Plugin'

        await service.set('db_plugin.mode', 'advanced', group_id='db-plugin')
        again = await manager.register_plugin_settings(service)
        assert again['db-plugin'].created_settings == []
        assert await service.get_value('db_plugin.mode') == 'advanced'
        # description restored, value kept
        assert (await service.get('db_plugin.mode'))['description'] == 'Operating mode'
