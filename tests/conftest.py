"""
Test environment: temporary SQLite database, no file logging, no LLM key.

Settings are read once (lru_cache), so the environment is set before any
profitfirst module is imported.
"""
import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="profitfirst-tests-")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("ANTHROPIC_API_KEY", "")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("SOURCE_RETRY_BASE_DELAY", "0")
os.environ.setdefault("SOURCE_RETRY_MAX_DELAY", "0")

import pytest  # noqa: E402

from profitfirst.models.base import init_db  # noqa: E402
from profitfirst.utils.cache import clear_cache  # noqa: E402

init_db()


@pytest.fixture(autouse=True)
def _clear_forecast_cache():
    clear_cache()
    yield
    clear_cache()
