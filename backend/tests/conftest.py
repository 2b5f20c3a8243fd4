import pytest
from fastapi.testclient import TestClient

import backend.config as config
import database.db as db
from backend.services.students import add_student


@pytest.fixture()
def test_db(tmp_path, monkeypatch):
    test_db = tmp_path / "hallpass_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    return test_db


@pytest.fixture()
def client(test_db):
    import backend.main as main

    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def auth_headers(client):
    res = client.post(
        "/auth/device",
        json={"device_id": "room-214-console", "device_secret": config.DEVICE_SECRET},
    )
    assert res.status_code == 200
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def kiosk_headers(client):
    res = client.post(
        "/auth/device",
        json={"device_id": "room-214-kiosk", "device_secret": config.DEVICE_SECRET, "role": "kiosk"},
    )
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture()
def roster(test_db):
    """Fifteen active students with ids 1..15."""
    return [add_student(f"Student{n}", chr(ord("A") + n - 1)) for n in range(1, 16)]
