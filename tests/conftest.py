import os
import sys

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from srvs import config, db, scheduler


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Every test gets its own database and config file."""
    monkeypatch.setattr(config, 'CFG_PATH', tmp_path / 'srvs_config.json')
    monkeypatch.setenv('SRVS_DB_PATH', str(tmp_path / 'srvs.db'))
    monkeypatch.setenv('SRVS_LOG_DIR', str(tmp_path / 'logs'))
    for var in ('USE_MOCK_API', 'MOCK_API_URL', 'SRVS_ADMIN_KEY', 'TEST_EMAIL', 'SRVS_HTTP_TIMEOUT'):
        monkeypatch.delenv(var, raising=False)
    db.init_db()
    yield tmp_path
    scheduler.set_registry(None)


@pytest.fixture
def paused_timer():
    timer = BackgroundScheduler()
    timer.start(paused=True)
    yield timer
    if timer.running:
        timer.shutdown(wait=False)
