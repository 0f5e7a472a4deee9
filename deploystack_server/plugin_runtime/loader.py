"""Plugin manifest parsing and module import.

A plugin directory looks like::

    plugins/
      example_plugin/
        plugin.yml        # id, name, version, entry_point, ...
        plugin.py         # defines the entry class
        routes.py         # optional, importable as a sibling (``from . import routes``)

Plugin directories are not installed packages. Each one is exposed under a
synthetic package ``deploystack_plugins.<dirname>_<hash>`` whose ``__path__``
points at the directory, so relative imports inside a plugin work and two
directories with the same name in different search paths never shadow each
other.
"""
from __future__ import annotations
import hashlib
import importlib
import logging
import re
import sys
import types
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from deploystack_server.plugin_runtime.errors import PluginLoadError, PluginManifestError
from deploystack_server.plugin_runtime.types import Plugin, PluginMeta

_log = logging.getLogger(__name__)

MANIFEST_FILE = 'plugin.yml'
DEFAULT_ENTRY_POINT = 'plugin:Plugin'
PLUGIN_PACKAGE_ROOT = 'deploystack_plugins'

_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
_ENTRY_PATTERN = re.compile(r'^[A-Za-z_][\w.]*:[A-Za-z_]\w*$')


@dataclass
class PluginManifest:
    id: str
    name: str
    version: str
    directory: Path
    description: str = ''
    author: Optional[str] = None
    entry_point: str = DEFAULT_ENTRY_POINT
    required_backend: Optional[str] = None

    @property
    def module_name(self) -> str:
        return self.entry_point.partition(':')[0]

    @property
    def class_name(self) -> str:
        return self.entry_point.partition(':')[2]

    def to_meta(self) -> PluginMeta:
        return PluginMeta(
            id=self.id,
            name=self.name,
            version=self.version,
            description=self.description,
            author=self.author,
        )


def parse_manifest(path: Path) -> PluginManifest:
    """Read ``plugin.yml``. Raises :class:`PluginManifestError` on any problem."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise PluginManifestError(path, str(exc)) from exc
    if not isinstance(data, dict):
        raise PluginManifestError(path, 'top level must be a mapping')

    plugin_id = data.get('id')
    name = data.get('name') or plugin_id
    ver = data.get('version')
    missing = [k for k, v in (('id', plugin_id), ('version', ver)) if not v]
    if missing:
        raise PluginManifestError(path, f"missing fields: {', '.join(missing)}")
    plugin_id = str(plugin_id)
    if not _ID_PATTERN.match(plugin_id):
        raise PluginManifestError(path, f"id {plugin_id!r} may only contain letters, digits, '_' and '-'")

    entry_point = str(data.get('entry_point') or DEFAULT_ENTRY_POINT)
    if not _ENTRY_PATTERN.match(entry_point):
        raise PluginManifestError(path, f"entry_point {entry_point!r} must look like 'module:Class'")

    required = data.get('required_backend')
    return PluginManifest(
        id=plugin_id,
        name=str(name),
        version=str(ver),
        directory=path.parent,
        description=str(data.get('description') or ''),
        author=data.get('author'),
        entry_point=entry_point,
        required_backend=str(required) if required else None,
    )


def backend_version_ok(required: Optional[str], current: str) -> bool:
    if not required:
        return True
    try:
        return SpecifierSet(required).contains(Version(current), prereleases=True)
    except (InvalidSpecifier, InvalidVersion) as exc:
        _log.error("cannot evaluate required_backend=%r against %s: %s", required, current, exc)
        return False


def _package_name_for(directory: Path) -> str:
    resolved = directory.resolve()
    digest = hashlib.sha1(str(resolved).encode('utf-8')).hexdigest()[:8]
    safe = re.sub(r'\W', '_', resolved.name)
    return f"{PLUGIN_PACKAGE_ROOT}.{safe}_{digest}"


def _ensure_package(directory: Path) -> str:
    root = sys.modules.get(PLUGIN_PACKAGE_ROOT)
    if root is None:
        root = types.ModuleType(PLUGIN_PACKAGE_ROOT)
        root.__path__ = []
        sys.modules[PLUGIN_PACKAGE_ROOT] = root

    pkg_name = _package_name_for(directory)
    if pkg_name not in sys.modules:
        pkg = types.ModuleType(pkg_name)
        pkg.__path__ = [str(directory.resolve())]
        sys.modules[pkg_name] = pkg
        setattr(root, pkg_name.rpartition('.')[2], pkg)
    return pkg_name


def import_plugin_module(manifest: PluginManifest) -> types.ModuleType:
    pkg_name = _ensure_package(manifest.directory)
    full = f"{pkg_name}.{manifest.module_name}"
    module = importlib.import_module(full)
    _log.debug("plugin=%s imported=%s", manifest.id, full)
    return module


def resolve_entry_class(manifest: PluginManifest, module: types.ModuleType) -> type:
    cls: Any = getattr(module, manifest.class_name, None)
    if cls is None:
        raise PluginLoadError(manifest.id, AttributeError(f"{module.__name__} has no attribute {manifest.class_name!r}"))
    if not isinstance(cls, type) or not issubclass(cls, Plugin):
        raise PluginLoadError(manifest.id, TypeError(f"{manifest.entry_point} is not a Plugin subclass"))
    return cls


def unload_plugin_modules(directory: Path) -> None:
    """Forget every module imported from ``directory`` so the next load re-executes it."""
    prefix = _package_name_for(directory)
    for key in [k for k in list(sys.modules) if k == prefix or k.startswith(prefix + '.')]:
        del sys.modules[key]
    importlib.invalidate_caches()
