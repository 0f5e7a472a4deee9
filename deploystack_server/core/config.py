"""Central configuration.

Process level settings only. Which database backend is in use is NOT decided
here: that choice is persisted by the database setup flow (see
``deploystack_server.db.config_store``) and may be absent on a fresh install.

Env vars:
  DEPLOYSTACK_DATA_DIR        - directory for writable application data (created)
  DEPLOYSTACK_PLUGINS_DIR     - extra plugin search paths (os.pathsep separated)
  DEPLOYSTACK_MIGRATIONS_DIR  - override for the SQL migrations directory
  DEPLOYSTACK_LOG_LEVEL       - root log level
  DEPLOYSTACK_ENV             - 'test' isolates the persisted db selection
  DEPLOYSTACK_DB_INIT_TIMEOUT - seconds allowed for connect + migrations
  DEPLOYSTACK_ENCRYPTION_SECRET - secret for encrypted global settings
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from deploystack_server import __version__

# Load a config.env file when present so operators can
# keep secrets out of shell history and compose files.
_cfg_override = os.getenv('DEPLOYSTACK_CONFIG_FILE')
_env_candidates = [Path(_cfg_override)] if _cfg_override else []
_env_candidates.append(Path.cwd() / 'config.env')
for _p in _env_candidates:
    if _p.exists():
        load_dotenv(str(_p))
        break


PACKAGE_ROOT = Path(__file__).resolve().parent.parent

_diagnostics: list[str] = []


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _detect_test_mode() -> bool:
    env = (os.getenv('DEPLOYSTACK_ENV') or '').strip().lower()
    if env:
        return env == 'test'
    return os.getenv('PYTEST_CURRENT_TEST') is not None or 'pytest' in sys.modules


env_data_dir = os.getenv('DEPLOYSTACK_DATA_DIR')

_candidates = []
for c in [env_data_dir, str(Path.cwd() / 'persistent_data')]:
    if c and c not in _candidates:
        _candidates.append(c)

data_dir = None
for cand in _candidates:
    p = Path(cand)
    try:
        p.mkdir(parents=True, exist_ok=True)
        data_dir = p
        _diagnostics.append(f"selected_data_dir={p} (candidate)")
        break
    except OSError as e:  # pragma: no cover
        _diagnostics.append(f"candidate_failed path={p} err={e}")
        continue

if data_dir is None:  # pragma: no cover
    data_dir = PACKAGE_ROOT.parent / 'persistent_data'
    data_dir.mkdir(parents=True, exist_ok=True)
    _diagnostics.append(f"fallback_package_dir={data_dir}")

_plugin_dirs = [PACKAGE_ROOT / 'plugins']
for raw in (os.getenv('DEPLOYSTACK_PLUGINS_DIR') or '').split(os.pathsep):
    raw = raw.strip()
    if raw:
        _plugin_dirs.append(Path(raw))


class Settings(BaseModel):
    app_name: str = 'DeployStack Backend'
    version: str = os.getenv('DEPLOYSTACK_VERSION', __version__)
    data_dir: Path = data_dir
    plugin_dirs: list[Path] = _plugin_dirs
    migrations_root: Path = Path(os.getenv('DEPLOYSTACK_MIGRATIONS_DIR') or (PACKAGE_ROOT / 'migrations'))
    default_connection_path: str = 'database/deploystack.db'
    # Logging level for the backend (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_level: str = os.getenv('DEPLOYSTACK_LOG_LEVEL', 'INFO')
    test_mode: bool = _detect_test_mode()
    db_init_timeout: float = float(os.getenv('DEPLOYSTACK_DB_INIT_TIMEOUT', '60'))
    encryption_secret: str | None = os.getenv('DEPLOYSTACK_ENCRYPTION_SECRET')
    host: str = os.getenv('DEPLOYSTACK_HOST', '0.0.0.0')
    port: int = int(os.getenv('DEPLOYSTACK_PORT', '3000'))
    sql_echo: bool = _env_flag('DEPLOYSTACK_SQL_ECHO')
    diagnostics: list[str] | None = _diagnostics


settings = Settings()
