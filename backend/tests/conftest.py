import json

import pytest
from fastapi.testclient import TestClient

from nosuite.core.config import Settings
from nosuite.main import create_app
from nosuite.services import build_services

MASTER_KEY = "11" * 32
ADMIN_DEVICE_ID = "admin-device"
AUTH_ORIGIN = "https://auth.nosuite.fr"
APP = "notes.nosuite.fr"
APP_ORIGIN = f"https://{APP}"
DEVICE_ID = "DEVICE1"


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        USERS_ROOT=tmp_path / "users",
        MASTER_KEY=MASTER_KEY,
        ADMIN_DEVICE_ID=ADMIN_DEVICE_ID,
        KDF_ITERATIONS=1000,
        LOG_LEVEL="DEBUG",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def write_access_lists(users_root, testers=(), beta=()):
    users_root.mkdir(parents=True, exist_ok=True)
    (users_root / "testers.json").write_text(json.dumps(list(testers)))
    (users_root / "beta-access.json").write_text(json.dumps(list(beta)))


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def services(settings):
    services = build_services(settings)
    services.bootstrap.unlock_with_master_key(MASTER_KEY)
    write_access_lists(settings.USERS_ROOT, testers=["a@x.com", "b@x.com"])
    return services


@pytest.fixture
def client(settings):
    write_access_lists(settings.USERS_ROOT, testers=["a@x.com"], beta=["beta@x.com"])
    app = create_app(settings)
    with TestClient(app) as client:
        yield client


def sign_up(client, email="a@x.com", password="pw1", name="Ann", device_id=DEVICE_ID):
    response = client.post(
        "/auth",
        json={"email": email, "password": password, "name": name, "device_id": device_id},
        headers={"Origin": AUTH_ORIGIN},
    )
    assert response.status_code == 200, response.text
    return response.json()["token"]


def app_token(client, identity_token, app=APP, device_id=DEVICE_ID):
    response = client.post(f"/auth/{app}", json={"token": identity_token, "device_id": device_id})
    assert response.status_code == 200, response.text
    return response.json()["token"]


def app_headers(token, device_id=DEVICE_ID, client_id=None):
    headers = {
        "Authorization": f"Bearer {token}",
        "Origin": APP_ORIGIN,
        "X-Device-Id": device_id,
    }
    if client_id:
        headers["X-Client-Id"] = client_id
    return headers
