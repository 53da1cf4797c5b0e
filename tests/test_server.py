import pytest
from fastapi.testclient import TestClient

from repcoach.counter.session import RepSessionManager
from repcoach.data.templates import TemplateStore
from repcoach.runtime import server
from repcoach.vision.config import VisionConfig

from conftest import make_angles

WALL_CLOCK = 1_700_000_000_000


@pytest.fixture
def client(tmp_path, tmp_db):
    server.MANAGER = RepSessionManager(
        templates=TemplateStore(tmp_path / "templates.json"),
        vision_cfg=VisionConfig(),
    )
    server.MANAGER.set_event_sink(server._sink)
    yield TestClient(server.app)
    server.MANAGER = None


def template_body():
    knees = [170, 170, 170, 150, 130, 110, 90, 90, 90, 110, 130, 150, 170, 170, 170]
    return {
        "duration": 0,
        "sampleRate": 10,
        "frames": [
            {"timestamp": WALL_CLOCK + i * 100, "angles": make_angles(left_knee=k, right_knee=k).to_dict()}
            for i, k in enumerate(knees)
        ],
    }


def test_idle_status(client):
    res = client.get("/sessions/current")
    assert res.status_code == 200
    body = res.json()
    assert body["state"] == "idle"
    assert body["session_id"] is None


def test_template_upload_and_fetch(client):
    res = client.put("/templates/lunge-id", json=template_body())
    assert res.status_code == 200
    summary = res.json()
    assert summary["primary_joint"] == "left_knee"
    assert summary["amplitude"] == pytest.approx(80)
    assert summary["frames"] == 15

    stored = client.get("/templates/lunge-id").json()
    assert stored["frames"][0]["timestamp"] == 0
    assert stored["duration"] == 1400
    assert stored["frames"][6]["angles"]["leftKnee"] == 90


def test_missing_template_is_404(client):
    assert client.get("/templates/nope").status_code == 404


def test_template_with_missing_joint_is_422(client):
    body = template_body()
    del body["frames"][0]["angles"]["leftWrist"]
    assert client.put("/templates/lunge-id", json=body).status_code == 422


def test_empty_template_is_422(client):
    assert client.put("/templates/lunge-id", json={"frames": []}).status_code == 422


def test_start_unknown_exercise_is_404(client):
    res = client.post("/counter/start", json={"exercise_id": "lunge-id", "exercise_name": "Lunge"})
    assert res.status_code == 404


def test_start_with_recorded_template(client):
    client.put("/templates/lunge-id", json=template_body())
    res = client.post("/counter/start", json={"exercise_id": "lunge-id", "exercise_name": "Lunge"})
    assert res.status_code == 200
    sid = res.json()["session_id"]

    status = client.get("/sessions/current").json()
    assert status["session_id"] == sid
    assert status["source"] == "pose"
    assert status["counter"]["completed_reps"] == 0

    stopped = client.post("/counter/stop").json()
    assert stopped == {"stopped": True, "session_id": sid}
    assert client.get("/sessions/current").json()["state"] == "idle"


def test_vision_start_without_instructions_is_422(client):
    res = client.post("/counter/start", json={"exercise_id": "x", "exercise_name": "Squat", "source": "vision"})
    assert res.status_code == 422


def test_switch_source_without_session_is_409(client):
    assert client.post("/counter/source", params={"source": "pose"}).status_code == 409


def test_pause_and_resume(client):
    assert client.post("/counter/pause").status_code == 409
    assert client.post("/counter/resume").status_code == 409

    sid = client.post("/counter/start", json={"exercise_id": "squat-id", "exercise_name": "Squat"}).json()["session_id"]
    res = client.post("/counter/pause")
    assert res.status_code == 200
    assert res.json() == {"session_id": sid, "paused": True}
    assert client.get("/sessions/current").json()["state"] == "paused"

    assert client.post("/counter/resume").json() == {"session_id": sid, "paused": False}
    assert client.get("/sessions/current").json()["state"] == "running"
    client.post("/counter/stop")
