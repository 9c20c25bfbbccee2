import json
import os
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
CFG_PATH = Path(os.environ.get('SRVS_CONFIG', ROOT / 'srvs_config.json'))

DEFAULTS = {
    'db_path': str(ROOT / 'srvs.db'),
    'log_dir': str(ROOT / 'logs'),
    'mock_api_url': 'http://localhost:3001',
    'use_mock_api': False,
    'test_email': 'test@example.com',
    'admin_key': 'admin-secret-key',
    'http_timeout': 15,
}

# config key -> environment variable
ENV_VARS = {
    'db_path': 'SRVS_DB_PATH',
    'log_dir': 'SRVS_LOG_DIR',
    'mock_api_url': 'MOCK_API_URL',
    'use_mock_api': 'USE_MOCK_API',
    'test_email': 'TEST_EMAIL',
    'admin_key': 'SRVS_ADMIN_KEY',
    'http_timeout': 'SRVS_HTTP_TIMEOUT',
}


def read_config():
    if not CFG_PATH.exists():
        return {}
    try:
        return json.loads(CFG_PATH.read_text(encoding='utf-8'))
    except ValueError:
        return {}


def write_config(d: dict):
    CFG_PATH.write_text(json.dumps(d, indent=2), encoding='utf-8')


def get(key: str):
    """Resolve a setting: environment first, then the JSON file, then the default."""
    env = os.environ.get(ENV_VARS.get(key, ''))
    if env is not None and env != '':
        return env
    cfg = read_config()
    if key in cfg:
        return cfg[key]
    return DEFAULTS.get(key)


def set_value(key: str, value):
    cfg = read_config()
    cfg[key] = value
    write_config(cfg)


def _as_bool(v) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ('1', 'true', 'yes', 'on')


def get_db_path() -> Path:
    return Path(get('db_path'))


def get_log_dir() -> Path:
    return Path(get('log_dir'))


def get_mock_api_url() -> str:
    return str(get('mock_api_url')).rstrip('/')


def use_mock_api() -> bool:
    return _as_bool(get('use_mock_api'))


def get_test_email() -> str:
    return get('test_email')


def get_admin_key() -> str:
    return get('admin_key')


def get_http_timeout() -> float:
    try:
        return float(get('http_timeout'))
    except (TypeError, ValueError):
        return float(DEFAULTS['http_timeout'])
