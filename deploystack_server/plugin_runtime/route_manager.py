"""Namespaced route registration for plugins.

Every path a plugin registers is rewritten to ``/plugin/<plugin_id>/<path>``
whatever the plugin asked for, so plugins can collide neither with each other
nor with core routes. ``'/widgets'``, ``'widgets'`` and ``'//widgets'`` all
land on ``/plugin/<id>/widgets``.

The router itself is private and only ever mounted with the namespace as its
prefix (:meth:`PluginRouteManager.mount`), so even a route added to it behind
the manager's back ends up inside ``/plugin/<id>/``.

Both call styles are supported::

    routes.get('/widgets', list_widgets)

    @routes.post('/widgets')
    async def create_widget(body: WidgetIn): ...
"""
from __future__ import annotations
import logging
from typing import Any, Callable, List, Optional

from fastapi import APIRouter

_log = logging.getLogger(__name__)

PLUGIN_ROUTE_PREFIX = '/plugin'


def _relative_path(route: str) -> str:
    return '/' + route.lstrip('/')


def namespaced_path(plugin_id: str, route: str) -> str:
    return f"{PLUGIN_ROUTE_PREFIX}/{plugin_id}{_relative_path(route)}"


class PluginRouteManager:
    def __init__(self, plugin_id: str):
        self._plugin_id = plugin_id
        self._router = APIRouter(tags=[f"plugin:{plugin_id}"])
        self.registered: List[str] = []

    @property
    def plugin_id(self) -> str:
        return self._plugin_id

    @property
    def namespace(self) -> str:
        return f"{PLUGIN_ROUTE_PREFIX}/{self._plugin_id}"

    def mount(self, app) -> None:
        """Attach every registered route to ``app`` under :attr:`namespace`."""
        app.include_router(self._router, prefix=self.namespace)

    def _register(self, method: str, route: str, handler: Optional[Callable[..., Any]], **options: Any):
        path = _relative_path(route)
        full_path = namespaced_path(self._plugin_id, route)

        def _add(fn: Callable[..., Any]) -> Callable[..., Any]:
            self._router.add_api_route(path, fn, methods=[method], **options)
            self.registered.append(f"{method} {full_path}")
            _log.debug("plugin route registered plugin=%s %s %s", self._plugin_id, method, full_path)
            return fn

        if handler is None:
            return _add
        return _add(handler)

    def get(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('GET', route, handler, **options)

    def post(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('POST', route, handler, **options)

    def put(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('PUT', route, handler, **options)

    def patch(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('PATCH', route, handler, **options)

    def delete(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('DELETE', route, handler, **options)

    def head(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('HEAD', route, handler, **options)

    def options(self, route: str, handler: Optional[Callable[..., Any]] = None, **options: Any):
        return self._register('OPTIONS', route, handler, **options)
