"""Plugin discovery and lifecycle.

Lifecycle of one plugin::

    discovered -> loaded (instantiated) -> registered (if enabled)
               -> tables merged into the schema composer (by DatabaseManager)
               -> initialize(db | None) -> register_routes under /plugin/<id>/
               -> reinitialize(db) once the database becomes available
               -> shutdown()

A failure in one plugin is logged and recorded; it never stops the others.
"""
from __future__ import annotations
import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from deploystack_server.core.config import settings
from deploystack_server.plugin_runtime.errors import (
    PluginDuplicateError,
    PluginError,
    PluginInitializeError,
    PluginLoadError,
    PluginNotFoundError,
)
from deploystack_server.plugin_runtime.loader import (
    MANIFEST_FILE,
    PluginManifest,
    backend_version_ok,
    import_plugin_module,
    parse_manifest,
    resolve_entry_class,
    unload_plugin_modules,
)
from deploystack_server.plugin_runtime.route_manager import PluginRouteManager
from deploystack_server.plugin_runtime.settings_registry import RegistrationResult, register_settings
from deploystack_server.plugin_runtime.types import Plugin, PluginConfiguration, PluginOptions

_log = logging.getLogger(__name__)


async def _maybe_await(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class PluginManager:
    def __init__(
        self,
        config: PluginConfiguration | None = None,
        *,
        app: Any = None,
        backend_version: str | None = None,
    ) -> None:
        if config is None:
            config = PluginConfiguration(paths=[str(p) for p in settings.plugin_dirs])
        self._paths: List[Path] = []
        for p in config.paths:
            self.add_plugin_path(p)
        self._options: Dict[str, PluginOptions] = dict(config.plugins)
        self._plugins: Dict[str, Plugin] = {}
        self._disabled: Dict[str, Plugin] = {}
        self._manifests: Dict[str, PluginManifest] = {}
        self._errors: Dict[str, str] = {}
        self._initialized_ids: set[str] = set()
        self._initialized = False
        self._app = app
        self._db = None
        self.route_managers: Dict[str, PluginRouteManager] = {}
        self.backend_version = backend_version or settings.version

    # --------------------------------------------------------------- wiring
    def set_app(self, app: Any) -> None:
        self._app = app

    def set_database(self, db) -> None:
        self._db = db

    @property
    def database(self):
        return self._db

    @property
    def plugin_paths(self) -> List[Path]:
        return list(self._paths)

    def add_plugin_path(self, path) -> None:
        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)

    # -------------------------------------------------------------- options
    def is_plugin_enabled(self, plugin_id: str) -> bool:
        opts = self._options.get(plugin_id)
        return opts is None or opts.enabled is not False

    def get_plugin_config(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        opts = self._options.get(plugin_id)
        return opts.config if opts is not None else None

    # --------------------------------------------------------------- lookup
    def get_plugin(self, plugin_id: str) -> Plugin:
        plugin = self._plugins.get(plugin_id)
        if plugin is None:
            raise PluginNotFoundError(plugin_id)
        return plugin

    def get_all_plugins(self) -> List[Plugin]:
        return list(self._plugins.values())

    def get_disabled_plugins(self) -> List[Plugin]:
        return list(self._disabled.values())

    def get_database_extensions(self) -> List[Plugin]:
        return [p for p in self._plugins.values() if getattr(p, 'database_extension', None) is not None]

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._errors)

    def is_plugin_initialized(self, plugin_id: str) -> bool:
        return plugin_id in self._initialized_ids

    # -------------------------------------------------------------- loading
    def register_plugin(self, plugin: Plugin) -> None:
        """Register an already constructed plugin (static registry path)."""
        plugin_id = plugin.meta.id
        if plugin_id in self._plugins:
            raise PluginDuplicateError(plugin_id)
        self._plugins[plugin_id] = plugin

    async def load_plugin(self, path) -> Plugin:
        """Load the plugin in directory ``path``.

        A disabled plugin is instantiated and returned but not registered.
        Raises :class:`PluginDuplicateError` for an id that is already loaded
        and :class:`PluginLoadError` for anything else.
        """
        directory = Path(path)
        label = directory.name
        try:
            manifest = await asyncio.to_thread(parse_manifest, directory / MANIFEST_FILE)
            label = manifest.id
            if not backend_version_ok(manifest.required_backend, self.backend_version):
                raise PluginLoadError(
                    manifest.id,
                    RuntimeError(f"requires backend {manifest.required_backend}, running {self.backend_version}"),
                )
            try:
                module = await asyncio.to_thread(import_plugin_module, manifest)
            except Exception:
                unload_plugin_modules(directory)
                raise
            cls = resolve_entry_class(manifest, module)
            plugin = cls()
            meta = getattr(plugin, 'meta', None)
            if meta is None:
                plugin.meta = manifest.to_meta()
            elif meta.id != manifest.id:
                raise PluginLoadError(
                    manifest.id, ValueError(f"class declares id {meta.id!r}, manifest declares {manifest.id!r}")
                )
        except (PluginDuplicateError, PluginLoadError):
            raise
        except Exception as exc:
            raise PluginLoadError(label, exc) from exc

        plugin_id = plugin.meta.id
        if plugin_id in self._plugins:
            raise PluginDuplicateError(plugin_id)
        self._manifests[plugin_id] = manifest
        if not self.is_plugin_enabled(plugin_id):
            _log.info("plugin %s is disabled, skipping registration", plugin_id)
            self._disabled[plugin_id] = plugin
            return plugin
        self._plugins[plugin_id] = plugin
        _log.info("loaded plugin id=%s version=%s", plugin_id, plugin.meta.version)
        return plugin

    def _list_candidates(self, root: Path) -> List[Path]:
        if not root.exists():
            _log.info("plugin directory not found: %s - creating directory", root)
            root.mkdir(parents=True, exist_ok=True)
            return []
        if not root.is_dir():
            _log.warning("plugin path is not a directory: %s", root)
            return []
        found: List[Path] = []
        for entry in sorted(root.iterdir(), key=lambda p: p.name):
            if not entry.is_dir() or entry.name.startswith(('.', '_')):
                continue
            if not (entry / MANIFEST_FILE).is_file():
                _log.debug("no %s in %s, skipping", MANIFEST_FILE, entry)
                continue
            found.append(entry)
        return found

    async def discover_plugins(self) -> List[str]:
        """Load every plugin under the configured paths; returns the ids loaded by this call."""
        loaded: List[str] = []
        for root in list(self._paths):
            try:
                candidates = await asyncio.to_thread(self._list_candidates, root)
            except OSError as exc:
                _log.error("error scanning plugin directory %s: %s", root, exc)
                continue
            for directory in candidates:
                try:
                    plugin = await self.load_plugin(directory)
                except PluginError as exc:
                    self._errors[directory.name] = str(exc)
                    _log.error("%s", exc, exc_info=exc.__cause__ is not None)
                    continue
                if plugin.meta.id in self._plugins:
                    loaded.append(plugin.meta.id)
        _log.info("plugin discovery complete. %d plugins loaded.", len(self._plugins))
        return loaded

    # ------------------------------------------------------------ lifecycle
    async def _register_routes(self, plugin: Plugin) -> None:
        hook = getattr(plugin, 'register_routes', None)
        if not callable(hook):
            return
        routes = PluginRouteManager(plugin.meta.id)
        await _maybe_await(hook, routes, self._db)
        self.route_managers[plugin.meta.id] = routes
        if self._app is not None:
            routes.mount(self._app)
        else:
            _log.warning("no app set; routes for plugin %s are not mounted", plugin.meta.id)
        _log.info("plugin %s registered %d routes under %s", plugin.meta.id, len(routes.registered), routes.namespace)

    async def _initialize_one(self, plugin: Plugin, hook: Callable[..., Any]) -> bool:
        plugin_id = plugin.meta.id
        try:
            await _maybe_await(hook, self._db)
        except Exception as exc:
            err = PluginInitializeError(plugin_id, exc)
            self._errors[plugin_id] = str(err)
            _log.error("%s", err, exc_info=exc)
            return False
        first_time = plugin_id not in self._initialized_ids
        self._initialized_ids.add(plugin_id)
        self._errors.pop(plugin_id, None)
        if first_time:
            try:
                await self._register_routes(plugin)
            except Exception as exc:
                self._errors[plugin_id] = f"route registration failed: {exc}"
                _log.error("route registration failed for plugin %s", plugin_id, exc_info=exc)
        return True

    async def initialize_plugins(self) -> None:
        """Initialize every registered plugin once. Tolerates a missing database."""
        if self._initialized:
            return
        if self._db is None:
            _log.info("initializing plugins without a database")
        for plugin in list(self._plugins.values()):
            await self._initialize_one(plugin, plugin.initialize)
        self._initialized = True

    async def reinitialize_plugins_with_database(self, db=None) -> List[str]:
        """Tell database-aware plugins that the database is now available.

        Plugins with a ``reinitialize`` method get it called; plugins that only
        declare a database extension get ``initialize`` called again. All
        others are left alone.
        """
        if db is not None:
            self._db = db
        if self._db is None:
            _log.warning("reinitialize requested but no database is set")
            return []
        touched: List[str] = []
        for plugin in list(self._plugins.values()):
            hook = getattr(plugin, 'reinitialize', None)
            if not callable(hook):
                if getattr(plugin, 'database_extension', None) is None:
                    continue
                hook = plugin.initialize
            _log.info("reinitializing plugin %s with database", plugin.meta.id)
            if await self._initialize_one(plugin, hook):
                touched.append(plugin.meta.id)
        return touched

    async def shutdown_plugins(self) -> None:
        for plugin in list(self._plugins.values()):
            hook = getattr(plugin, 'shutdown', None)
            if not callable(hook):
                continue
            try:
                await _maybe_await(hook)
            except Exception as exc:
                _log.error("error shutting down plugin %s", plugin.meta.id, exc_info=exc)
        self._initialized = False
        self._initialized_ids.clear()

    async def register_plugin_settings(self, service) -> Dict[str, RegistrationResult]:
        """Create the global settings declared by plugins through ``global_settings_extension``."""
        results: Dict[str, RegistrationResult] = {}
        for plugin in self._plugins.values():
            ext = getattr(plugin, 'global_settings_extension', None)
            if ext is None:
                continue
            try:
                results[plugin.meta.id] = await register_settings(
                    service, ext.groups, ext.settings, owner=plugin.meta.id
                )
            except Exception as exc:
                _log.error("settings registration failed for plugin %s", plugin.meta.id, exc_info=exc)
        return results

    # ------------------------------------------------------------- reporting
    def describe(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for enabled, source in ((True, self._plugins), (False, self._disabled)):
            for plugin_id, plugin in source.items():
                meta = plugin.meta
                manifest = self._manifests.get(plugin_id)
                rows.append({
                    'id': plugin_id,
                    'name': meta.name,
                    'version': meta.version,
                    'description': meta.description,
                    'author': meta.author,
                    'enabled': enabled,
                    'initialized': plugin_id in self._initialized_ids,
                    'has_database_extension': getattr(plugin, 'database_extension', None) is not None,
                    'route_namespace': self.route_managers[plugin_id].namespace if plugin_id in self.route_managers else None,
                    'path': str(manifest.directory) if manifest is not None else None,
                    'error': self._errors.get(plugin_id),
                })
        return rows
