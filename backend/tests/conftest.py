import pytest

from docflow.core.config import get_settings
from docflow.utils.alerting import alert_tracker


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests mutate env vars; never leak a cached Settings instance across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_alert_tracker():
    alert_tracker.reset()
    yield
    alert_tracker.reset()
