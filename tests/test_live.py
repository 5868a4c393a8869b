from flask import Flask

from app import load_config
from conftest import add_mark, add_request, auth, make_token
from utils import live


class RecordingSocketIO:
    def __init__(self):
        self.init_calls = []

    def init_app(self, app, **kwargs):
        self.init_calls.append(kwargs)

    def on(self, event):
        return lambda handler: handler


def test_message_queue_defaults_to_redis_url(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    monkeypatch.delenv("SOCKETIO_MESSAGE_QUEUE", raising=False)
    flask_app = Flask("live-config")

    load_config(flask_app)

    assert flask_app.config["SOCKETIO_MESSAGE_QUEUE"] == "redis://cache:6379/1"


def test_empty_message_queue_means_single_process(monkeypatch):
    monkeypatch.setenv("SOCKETIO_MESSAGE_QUEUE", "")
    flask_app = Flask("live-config")

    load_config(flask_app)

    assert flask_app.config["SOCKETIO_MESSAGE_QUEUE"] is None


def test_init_live_passes_message_queue(monkeypatch):
    recorder = RecordingSocketIO()
    monkeypatch.setattr(live, "socketio", recorder)

    queued = Flask("api")
    queued.config["SOCKETIO_MESSAGE_QUEUE"] = "redis://cache:6379/1"
    live.init_live(queued)
    local = Flask("api")
    live.init_live(local)

    assert recorder.init_calls[0]["message_queue"] == "redis://cache:6379/1"
    assert "message_queue" not in recorder.init_calls[1]
    assert recorder.init_calls[1]["client_manager"] is None


def test_subscribed_student_receives_publish(app, client, student, teacher):
    add_mark("stu-1", "CS101", 44)
    reval = add_request("stu-1", "CS101", status="TEACHER_REVIEW")
    sio_client = live.socketio.test_client(app, flask_test_client=client)
    sio_client.emit("subscribe_requests", {"token": make_token("stu-1")})
    sio_client.get_received()

    client.post(
        f"/api/teacher/revaluations/{reval.id}/publish",
        json={"revised_score": 55},
        headers=auth("tch-1", role="teacher", department="CSE"),
    )

    updates = [m for m in sio_client.get_received() if m["name"] == "revaluation_status"]
    assert [u["args"][0] for u in updates] == [
        {"request_id": reval.id, "subject_code": "CS101", "status": "PUBLISHED"}
    ]
    sio_client.disconnect()
