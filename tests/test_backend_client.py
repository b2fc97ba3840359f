import pytest
import requests

from core.backend_client import BackendClient, BackendError
from http_rest_api.main import get_backend


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        return self._payload


@pytest.fixture
def pb():
    return BackendClient(base_url="https://backend.test/", service_key="service-key", timeout=3)


def test_get_user_sends_caller_token(pb, monkeypatch):
    calls = []

    def fake_get(url, headers, timeout):
        calls.append((url, headers))
        return FakeResponse(200, {"id": "u1", "email": "u1@farm.test"})

    monkeypatch.setattr(pb.session, "get", fake_get)

    assert pb.get_user("abc")["id"] == "u1"
    url, headers = calls[0]
    assert url == "https://backend.test/auth/v1/user"
    assert headers["Authorization"] == "Bearer abc"
    assert headers["apikey"] == "service-key"


def test_get_user_invalid_token(pb, monkeypatch):
    monkeypatch.setattr(pb.session, "get", lambda *a, **k: FakeResponse(401))

    assert pb.get_user("expired") is None
    assert pb.get_user("") is None


def test_get_user_unreachable(pb, monkeypatch):
    def boom(*a, **k):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(pb.session, "get", boom)

    with pytest.raises(BackendError):
        pb.get_user("abc")


def test_delete_user_uses_service_key(pb, monkeypatch):
    calls = []
    monkeypatch.setattr(pb.session, "delete", lambda url, headers, timeout: calls.append((url, headers)) or FakeResponse(200))

    pb.delete_user("u1")

    assert calls[0][0] == "https://backend.test/auth/v1/admin/users/u1"
    assert calls[0][1]["Authorization"] == "Bearer service-key"


def test_delete_missing_user_is_not_an_error(pb, monkeypatch):
    monkeypatch.setattr(pb.session, "delete", lambda *a, **k: FakeResponse(404))
    pb.delete_user("gone")

    monkeypatch.setattr(pb.session, "delete", lambda *a, **k: FakeResponse(500, text="oops"))
    with pytest.raises(BackendError):
        pb.delete_user("u1")


def test_upload_and_public_url(pb, monkeypatch):
    calls = []

    def fake_post(url, headers, data, timeout):
        calls.append((url, headers, data))
        return FakeResponse(200, {"Key": "audio-files/uploads/a.mp3"})

    monkeypatch.setattr(pb.session, "post", fake_post)

    assert pb.upload("audio-files", "uploads/a.mp3", b"abc", "audio/mpeg") == "uploads/a.mp3"
    url, headers, data = calls[0]
    assert url == "https://backend.test/storage/v1/object/audio-files/uploads/a.mp3"
    assert headers["Content-Type"] == "audio/mpeg"
    assert headers["x-upsert"] == "false"
    assert data == b"abc"
    assert pb.public_url("audio-files", "uploads/a.mp3") == "https://backend.test/storage/v1/object/public/audio-files/uploads/a.mp3"


def test_upload_error(pb, monkeypatch):
    monkeypatch.setattr(pb.session, "post", lambda *a, **k: FakeResponse(409, text="Duplicate"))

    with pytest.raises(BackendError, match="409"):
        pb.upload("audio-files", "uploads/a.mp3", b"abc")


def test_request_scoped_client_closes_its_session(monkeypatch):
    closed = []
    monkeypatch.setattr(requests.Session, "close", lambda self: closed.append(self))

    dependency = get_backend()
    backend = next(dependency)
    assert isinstance(backend, BackendClient)
    dependency.close()

    assert closed == [backend.session]


def test_request_scoped_client_closes_when_the_route_fails(monkeypatch):
    closed = []
    monkeypatch.setattr(requests.Session, "close", lambda self: closed.append(self))

    dependency = get_backend()
    backend = next(dependency)
    with pytest.raises(BackendError):
        dependency.throw(BackendError("upload failed"))

    assert closed == [backend.session]
