import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core import models
from core.backend_client import BackendError
from core.database import Base
from http_rest_api.main import app, get_db, get_backend


class FakeBackend:

    '''In-memory stand-in for the identity service and object storage.'''

    def __init__(self):
        self.users = {}
        self.objects = {}
        self.deleted = []
        self.fail_upload = False

    def get_user(self, token):
        return self.users.get(token)

    def delete_user(self, user_id):
        self.deleted.append(user_id)

    def upload(self, bucket, path, data, content_type="application/octet-stream"):
        if self.fail_upload:
            raise BackendError("storage is down")
        self.objects[(bucket, path)] = (data, content_type)
        return path

    def public_url(self, bucket, path):
        return f"https://storage.test/{bucket}/{path}"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_session(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(make_session, backend):
    def override_get_db():
        db = make_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_backend] = lambda: backend
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(make_session, backend):

    '''Register an account in the fake identity service and give it a profile and roles.'''

    def _make_user(user_id, roles=("user",)):
        token = f"token-{user_id}"
        backend.users[token] = {"id": user_id, "email": f"{user_id}@farm.test", "user_metadata": {"username": user_id}}
        with make_session() as s:
            s.add(models.Profile(id=user_id, username=user_id, email=f"{user_id}@farm.test"))
            for role in roles:
                s.add(models.UserRole(user_id=user_id, role=role))
            s.commit()
        return {"Authorization": f"Bearer {token}"}

    return _make_user
