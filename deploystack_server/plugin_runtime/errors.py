from __future__ import annotations


class PluginError(Exception):
    """Base class for plugin runtime failures."""


class PluginLoadError(PluginError):
    def __init__(self, plugin_id: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ''
        super().__init__(f"Failed to load plugin: {plugin_id}{detail}")
        self.plugin_id = plugin_id
        self.__cause__ = cause


class PluginInitializeError(PluginError):
    def __init__(self, plugin_id: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ''
        super().__init__(f"Failed to initialize plugin: {plugin_id}{detail}")
        self.plugin_id = plugin_id
        self.__cause__ = cause


class PluginDuplicateError(PluginError):
    def __init__(self, plugin_id: str) -> None:
        super().__init__(f"Plugin with ID '{plugin_id}' is already loaded")
        self.plugin_id = plugin_id


class PluginNotFoundError(PluginError):
    def __init__(self, plugin_id: str) -> None:
        super().__init__(f"Plugin with ID '{plugin_id}' not found")
        self.plugin_id = plugin_id


class PluginManifestError(PluginError):
    def __init__(self, path, message: str) -> None:
        super().__init__(f"Invalid plugin manifest {path}: {message}")
        self.path = path
