import os
import pathlib

import pytest

# Keep the persisted db selection away from a developer's real one
os.environ.setdefault('DEPLOYSTACK_ENV', 'test')

from deploystack_server.core.config import PACKAGE_ROOT
from deploystack_server.db.config_store import DbConfig, DbConfigStore
from deploystack_server.db.manager import DatabaseManager
from deploystack_server.services.encryption import EncryptionService

TESTS_ROOT = pathlib.Path(__file__).resolve().parent
TEST_PLUGINS_DIR = TESTS_ROOT / 'test_plugins'
MIGRATIONS_ROOT = PACKAGE_ROOT / 'migrations'


def sqlite_config(path: str = 'database/test.db') -> DbConfig:
    return DbConfig(backend_kind='sqlite', connection_path=path)


def write_plugin(root: pathlib.Path, dirname: str, manifest: str, source: str | None = None) -> pathlib.Path:
    """Create a throwaway plugin directory under ``root``."""
    directory = root / dirname
    directory.mkdir(parents=True, exist_ok=True)
    (directory / 'plugin.yml').write_text(manifest, encoding='utf-8')
    if source is not None:
        (directory / 'plugin.py').write_text(source, encoding='utf-8')
    return directory


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / 'data'
    d.mkdir()
    return d


@pytest.fixture
def config_store(data_dir):
    return DbConfigStore(data_dir, test_mode=True)


@pytest.fixture
async def db_manager(data_dir, config_store):
    manager = DatabaseManager(
        config_store=config_store,
        data_dir=data_dir,
        migrations_root=MIGRATIONS_ROOT,
        init_timeout=30,
        echo=False,
    )
    yield manager
    await manager.close()


@pytest.fixture
async def ready_db_manager(db_manager):
    assert await db_manager.setup_new_database(sqlite_config())
    return db_manager


@pytest.fixture
def encryption():
    return EncryptionService()
