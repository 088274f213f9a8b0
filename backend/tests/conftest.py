import os
import shutil
import tempfile
from pathlib import Path

import pytest

# Point the app at throw-away storage before `fitclub` is first imported.
_TMP = Path(tempfile.mkdtemp(prefix="fitclub-tests-"))
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["AUTH_RATE_LIMIT_PER_MIN"] = "10000"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:test-bot-token"


@pytest.fixture(scope="session", autouse=True)
def temp_storage():
    """Remove the temporary database and uploads after the test session."""
    yield _TMP
    shutil.rmtree(_TMP, ignore_errors=True)
