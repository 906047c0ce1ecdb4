import os
import tempfile

import pytest

# must be set before ``repo`` creates its engine
_DB_FILE = os.path.join(tempfile.mkdtemp(prefix="stock-"), "stock.db")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_FILE}")


@pytest.fixture
def stock_client():
    from fastapi.testclient import TestClient

    from main import app
    from repo import Base, engine, init_db

    Base.metadata.drop_all(engine)
    init_db()
    with TestClient(app) as client:
        yield client
