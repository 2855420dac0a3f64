from __future__ import annotations

import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from fingerprint_attendance.main import create_app
from fingerprint_attendance.policy import AttendancePolicy, static_policy


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def client(db, upload_dir):
    app = create_app(db_manager=db, policy_provider=static_policy(AttendancePolicy()), upload_dir=upload_dir)
    with TestClient(app) as test_client:
        yield test_client


def _register(client, fingerprint_id="FP1", matric="M1", name="Ada", files=None):
    return client.post(
        "/api/addStudent",
        data={"fingerprint_id": fingerprint_id, "name": name, "matric": matric},
        files=files,
    )


def test_health(client):
    res = client.get("/")

    assert res.status_code == 200
    assert res.json()["status"] == "online"
    assert res.json()["database"] is True


def test_enrollment_handshake_end_to_end(client, upload_dir):
    res = client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})
    assert res.status_code == 201
    assert res.json() == {"id": "FP1"}

    assert client.get("/api/addStudent").json() == {"id": "FP1"}

    res = _register(client, files={"image": ("ada.png", _png_bytes(), "image/png")})
    assert res.status_code == 201
    body = res.json()
    assert body["message"] == "Student created successfully"
    assert body["student"]["fingerprint_id"] == "FP1"
    assert body["student"]["image"].startswith("/uploads/students/")
    assert body["student"]["image"].endswith(".png")
    assert len(list(upload_dir.iterdir())) == 1

    assert client.get("/api/addStudent").json() == {"id": ""}

    res = client.post("/api/markAttendance/FP1")
    assert res.status_code == 201
    body = res.json()
    assert body["is_first_sign_in"] is True
    assert body["attendance"]["sign_in_count"] == 1
    assert body["message"].startswith("Attendance marked! First sign-in at ")


def test_detect_rejects_empty_fingerprint(client):
    res = client.post("/api/hardware/detect", json={"fingerprint_id": ""})

    assert res.status_code == 422


def test_complete_without_pending_is_404(client):
    res = _register(client, fingerprint_id="FP9")

    assert res.status_code == 404


def test_conflict_names_the_field(client, upload_dir):
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})
    _register(client)
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP2"})

    res = _register(
        client,
        fingerprint_id="FP2",
        matric="M1",
        files={"image": ("b.png", _png_bytes(), "image/png")},
    )

    assert res.status_code == 409
    assert res.json()["detail"]["field"] == "matric"
    # Photo of a rejected form is not kept
    assert not upload_dir.exists() or list(upload_dir.iterdir()) == []


def test_invalid_image_is_rejected(client):
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})

    res = _register(client, files={"image": ("x.png", b"not an image", "image/png")})

    assert res.status_code == 400
    assert client.get("/api/addStudent").json() == {"id": "FP1"}


def test_oversized_image_is_rejected(client, upload_dir, monkeypatch):
    from fingerprint_attendance import config

    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 16)
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})

    res = _register(client, files={"image": ("big.png", _png_bytes(), "image/png")})

    assert res.status_code == 413
    assert not upload_dir.exists() or list(upload_dir.iterdir()) == []
    assert client.get("/api/addStudent").json() == {"id": "FP1"}


def test_decompression_bomb_is_rejected(client, monkeypatch):
    # 4x4 pixels is more than twice this limit
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})

    res = _register(client, files={"image": ("bomb.png", _png_bytes(), "image/png")})

    assert res.status_code == 400
    assert client.get("/api/addStudent").json() == {"id": "FP1"}


def test_mark_unknown_fingerprint_is_404(client):
    res = client.post("/api/markAttendance/FP404")

    assert res.status_code == 404
    assert client.get("/api/quickstats").json()["number_of_attendance"] == 0


def test_second_mark_same_day_merges(client):
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})
    _register(client)

    client.post("/api/markAttendance/FP1")
    body = client.post("/api/markAttendance/FP1").json()

    assert body["is_first_sign_in"] is False
    assert body["attendance"]["sign_in_count"] == 2
    assert body["message"].startswith("Attendance updated! Sign-in #2 at ")

    day = body["attendance"]["attendance_date"]
    rows = client.get("/api/attendance", params={"date": day}).json()["attendance"]
    assert len(rows) == 1
    assert rows[0]["sign_in_count"] == 2


def test_reports(client):
    client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})
    student = _register(client).json()["student"]
    client.post("/api/markAttendance/FP1")

    eligibility = client.get("/api/eligibility").json()
    assert eligibility["eligibility"][0]["matric"] == "M1"
    assert eligibility["number_of_eligible_students"] == 0

    stats = client.get("/api/quickstats").json()
    assert stats == {"number_of_students": 1, "number_of_attendance": 1, "number_of_eligible_students": 0}

    graph = client.get("/api/graphData").json()["data"]
    assert [point["count"] for point in graph] == [1]

    assert client.get("/api/student/fingerprint/FP1").json()["total_attendances"] == 1
    assert client.get(f"/api/student/{student['id']}").json()["matric"] == "M1"
    assert client.get("/api/student/999").status_code == 404


def test_attendance_rejects_bad_date(client):
    res = client.get("/api/attendance", params={"date": "14/10/2026"})

    assert res.status_code == 400


def test_config_toggle_switches_to_demo_mode(db, upload_dir):
    # No explicit provider: policy comes from system_config on every call
    app = create_app(db_manager=db, upload_dir=upload_dir)
    with TestClient(app) as client:
        client.post("/api/hardware/detect", json={"fingerprint_id": "FP1"})
        _register(client)

        res = client.put("/api/config/demo_mode", json={"value": "true"})
        assert res.status_code == 200
        assert client.get("/api/config").json()["config"]["demo_mode"]["value"] == "true"

        first = client.post("/api/markAttendance/FP1").json()
        second = client.post("/api/markAttendance/FP1").json()

    assert first["mode"] == second["mode"] == "demo"
    assert second["message"].startswith("Day 2 attendance marked at ")
    assert first["attendance"]["id"] != second["attendance"]["id"]


def test_unknown_config_key_is_404(client):
    res = client.put("/api/config/nope", json={"value": "1"})

    assert res.status_code == 404
