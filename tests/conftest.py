import os

# Must be set before dashboard.core.db builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_SECRET"] = "test-secret"
os.environ["SYNC_SECRET"] = "cron-secret"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin-pass"
for name in ("ACCOUNTS_CSV_URL", "TEACHERS_CSV_URL", "ACCOUNTS_WRITE_URL", "ACCOUNTS_WRITE_SECRET", "GEMINI_API_KEY", "DASHBOARD_CONFIG"):
    os.environ.pop(name, None)

import pytest
from fastapi.testclient import TestClient

from dashboard.core import models
from dashboard.core.db import SessionLocal, engine, init_db
from dashboard.core.store import set_app_state


def make_student(mhs, name="Học sinh", class_name="8A1", scores=None, **extra):
    return {
        "mhs": mhs,
        "name": name,
        "class": class_name,
        "scores": scores or [],
        "activeActions": [],
        "actionsByMonth": {},
        **extra,
    }


def score_grid(months, rows):
    """
    Two-header-row grid: ``months`` is a list of month keys, each followed by
    the three subject columns; ``rows`` are (mhs, name, class, [m, l, e] * len(months)).
    """
    month_row = ["", "", ""]
    header_row = ["MHS", "HỌ VÀ TÊN", "LỚP"]
    for mk in months:
        month_row += [mk, "", ""]
        header_row += ["TOÁN", "NGỮ VĂN", "TIẾNG ANH"]
    return [month_row, header_row] + [list(r) for r in rows]


@pytest.fixture(autouse=True)
def fresh_db():
    models.Base.metadata.drop_all(bind=engine)
    init_db()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    def _seed(students, state_id="DIEM_2526"):
        set_app_state(db, state_id, {"students": students})
    return _seed


@pytest.fixture
def client():
    from dashboard.app import app
    with TestClient(app) as c:
        yield c


def login(client, username, password):
    response = client.post("/api/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["user"]


@pytest.fixture
def admin_client(client):
    login(client, "admin", "admin-pass")
    return client
