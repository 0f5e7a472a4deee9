"""Plugin routes are namespaced under /plugin/<id>/."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import TEST_PLUGINS_DIR, write_plugin
from deploystack_server.plugin_runtime.manager import PluginManager
from deploystack_server.plugin_runtime.route_manager import PluginRouteManager, namespaced_path
from deploystack_server.plugin_runtime.types import PluginConfiguration

SNEAKY_SOURCE = '''
from deploystack_server.plugin_runtime.types import Plugin as Base


class Plugin(Base):
    def initialize(self, db):
        pass

    def register_routes(self, routes, db):
        routes.get('/ok', lambda: {'ok': True})
        routes._router.add_api_route('/escape', lambda: {'escaped': True}, methods=['GET'])
'''


def client_for(routes: PluginRouteManager) -> TestClient:
    app = FastAPI()
    routes.mount(app)
    return TestClient(app)


class TestNamespacedPath:

    @pytest.mark.parametrize('route', ['/widgets', 'widgets', '//widgets'])
    def test_leading_slashes_do_not_matter(self, route):
        assert namespaced_path('p1', route) == '/plugin/p1/widgets'

    def test_nested(self):
        assert namespaced_path('p1', '/a/b/{item_id}') == '/plugin/p1/a/b/{item_id}'


class TestPluginRouteManager:

    def test_direct_registration(self):
        routes = PluginRouteManager('p1')
        routes.get('/widgets', lambda: {'ok': True})
        client = client_for(routes)
        assert client.get('/plugin/p1/widgets').json() == {'ok': True}
        assert client.get('/widgets').status_code == 404

    def test_with_and_without_leading_slash_are_identical(self):
        a = PluginRouteManager('p1')
        a.get('/widgets', lambda: 'a')
        b = PluginRouteManager('p1')
        b.get('widgets', lambda: 'b')
        assert a.registered == b.registered == ['GET /plugin/p1/widgets']

    def test_decorator_registration(self):
        routes = PluginRouteManager('p1')

        @routes.post('items')
        async def create(payload: dict):
            return {'created': payload}

        assert create.__name__ == 'create'
        client = client_for(routes)
        assert client.post('/plugin/p1/items', json={'x': 1}).json() == {'created': {'x': 1}}

    def test_all_verbs(self):
        routes = PluginRouteManager('p1')
        for verb in ('get', 'post', 'put', 'patch', 'delete', 'options'):
            getattr(routes, verb)('/thing', lambda: {'ok': True})
        routes.head('/thing', lambda: None)
        assert {r.split()[0] for r in routes.registered} == {'GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS'}
        client = client_for(routes)
        assert client.put('/plugin/p1/thing').status_code == 200
        assert client.delete('/plugin/p1/thing').status_code == 200

    def test_path_params(self):
        routes = PluginRouteManager('p1')
        routes.get('/items/{item_id}', lambda item_id: {'id': item_id})
        assert client_for(routes).get('/plugin/p1/items/42').json() == {'id': '42'}

    def test_accessors(self):
        routes = PluginRouteManager('p1')
        assert routes.plugin_id == 'p1'
        assert routes.namespace == '/plugin/p1'


class TestMountedPluginRoutes:

    @pytest.mark.asyncio
    async def test_fixture_plugin_routes_only_under_namespace(self):
        app = FastAPI()
        manager = PluginManager(PluginConfiguration(paths=[str(TEST_PLUGINS_DIR)]), app=app, backend_version='1.0.0')
        await manager.discover_plugins()
        await manager.initialize_plugins()

        client = TestClient(app)
        r = client.get('/plugin/basic-plugin/widgets')
        assert r.status_code == 200
        assert r.json() == {'plugin': 'basic-plugin', 'widgets': ['a', 'b']}
        assert client.get('/widgets').status_code == 404
        assert client.post('/plugin/basic-plugin/echo', json={'a': 1}).json() == {'echo': {'a': 1}}
        # the failing plugin never got to register routes
        assert client.get('/plugin/failing-plugin/never').status_code == 404

    @pytest.mark.asyncio
    async def test_routes_added_to_the_router_directly_stay_namespaced(self, tmp_path):
        write_plugin(tmp_path, 'sneaky', 'id: sneaky\nversion: 1.0.0\n', SNEAKY_SOURCE)
        app = FastAPI()
        manager = PluginManager(PluginConfiguration(paths=[str(tmp_path)]), app=app, backend_version='1.0.0')
        await manager.discover_plugins()
        await manager.initialize_plugins()

        client = TestClient(app)
        assert client.get('/plugin/sneaky/ok').json() == {'ok': True}
        assert client.get('/escape').status_code == 404
        assert client.get('/plugin/sneaky/escape').json() == {'escaped': True}
        assert not hasattr(manager.route_managers['sneaky'], 'router')
