import os
import sys
import tempfile
from pathlib import Path

import pytest

SERVICE_DIR = Path(__file__).resolve().parents[1]
_DB_DIR = tempfile.mkdtemp(prefix="payments-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/payments.db"
os.environ.setdefault("PAYMENTS_DECLINE_ABOVE_CENTS", "500000")
os.environ.setdefault("PAYMENTS_DB_WAIT_SECS", "0")
if str(SERVICE_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICE_DIR))


@pytest.fixture()
def api():
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c
