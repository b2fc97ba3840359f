from core import crud
from core.models import SensorReading
from core.utils import merge_latest


def test_merge_latest_takes_newest_non_null():
    rows = [
        {"temperature": 30.0, "nitrogen_value": None, "auto_message": None},
        {"temperature": 25.0, "nitrogen_value": 0.0, "auto_message": "dry"},
    ]

    merged = merge_latest(rows, ("temperature", "nitrogen_value", "auto_message", "audio_url"))

    assert merged == {"temperature": 30.0, "nitrogen_value": 0.0, "auto_message": "dry", "audio_url": None}


def test_latest_reading_merges_the_two_producers(make_session):
    with make_session() as s:
        crud.create_reading(s, temperature=24.0, humidity=60.0, soil_moisture=30.0, nitrogen_value=11.0,
                            phosphorus_value=7.0, potassium_value=19.0, auto_message="ok")
        crud.create_reading(s, temperature=27.5, humidity=58.0, soil_moisture=33.0)

        latest = crud.latest_reading(s)

    assert latest["temperature"] == 27.5
    assert latest["nitrogen_value"] == 11.0
    assert latest["auto_message"] == "ok"
    assert latest["audio_url"] is None


def test_latest_reading_only_looks_at_two_rows(make_session):
    with make_session() as s:
        crud.create_reading(s, nitrogen_value=5.0)
        crud.create_reading(s, temperature=1.0)
        crud.create_reading(s, temperature=2.0)

        assert crud.latest_reading(s)["nitrogen_value"] is None


def test_history_only_npk_rows_newest_first(make_session):
    with make_session() as s:
        for n in (1.0, None, 2.0, 3.0):
            crud.create_reading(s, nitrogen_value=n, temperature=20.0)

        history = crud.reading_history(s, limit=2)

    assert [h["nitrogen_value"] for h in history] == [3.0, 2.0]


def test_latest_endpoint(client, make_user):
    headers = make_user("grower")
    assert client.get("/sensor-data/latest", headers=headers).json() == {"success": True, "data": None}

    client.post("/receive-nodered-data", json={"temperature": 22})
    r = client.get("/sensor-data/latest", headers=headers)

    assert r.status_code == 200
    assert r.json()["data"]["temperature"] == 22
    assert r.json()["data"]["nitrogen_value"] is None


def test_history_endpoint_limit_bounds(client, make_user):
    headers = make_user("grower")
    assert client.get("/sensor-data/history?limit=0", headers=headers).status_code == 400
    assert client.get("/sensor-data/history?limit=10", headers=headers).json() == {"success": True, "data": []}


def test_read_endpoints_require_a_signed_in_user(client):
    client.post("/receive-nodered-data", json={"temperature": 22})

    for path in ("/sensor-data/latest", "/sensor-data/history"):
        assert client.get(path).status_code == 401
        r = client.get(path, headers={"Authorization": "Bearer stale"})
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}


def test_zero_is_not_absent(make_session):
    with make_session() as s:
        row = crud.create_reading(s, temperature=0.0)
        assert s.get(SensorReading, row.id).temperature == 0.0
        assert s.get(SensorReading, row.id).humidity is None


# ===============================
# CROSS-CUTTING
# ===============================

def test_preflight_on_every_endpoint(client):
    for path in ("/receive-nodered-data", "/receive-sensor-data", "/publish-mqtt", "/admin-manage-users"):
        r = client.options(path)
        assert r.status_code == 200
        assert r.content == b""
        assert r.headers["access-control-allow-origin"] == "*"
        assert "authorization" in r.headers["access-control-allow-headers"]


def test_cors_headers_on_regular_responses(client):
    r = client.get("/sensor-data/latest")

    assert r.headers["access-control-allow-origin"] == "*"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
