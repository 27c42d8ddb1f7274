import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from services import Services
from services.push import MemoryPushGateway


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["collabolab_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def push():
    return MemoryPushGateway(failing_tokens={"dead-device"})


@pytest.fixture
def services(db, push):
    return Services(db, push)


@pytest.fixture
def make_user(services):
    def _make(name, token=""):
        email = f"{name.lower()}@collab.io"
        uid = services.users.create_user(name, email, "s3cret-pass")
        if token:
            services.db["user"].update_one({"_id": uid}, {"$set": {"fcm_token": token}})
        return uid
    return _make


@pytest.fixture
def client(db, push):
    from main import app, get_push

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_push] = lambda: push
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    def _login(email, password="s3cret-pass"):
        r = client.post("/auth/login", json={"email": email, "password": password})
        return {"Authorization": f"Bearer {r.json()['token']}"}
    return _login
