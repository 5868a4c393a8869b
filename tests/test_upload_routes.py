import io
import os

import pytest
import redis

from conftest import FakeQueue, add_request, add_user, auth
from models import db, RevaluationRequest

STUDENT = auth("stu-1", role="student")


def _files(*names):
    return [(io.BytesIO(b"%PDF-1.4 fake sheet"), name) for name in names]


def _upload(client, request_id, files, headers=STUDENT):
    data = {"files": files}
    if request_id is not None:
        data["requestId"] = str(request_id)
    return client.post(
        "/api/upload/answer-sheet",
        data=data,
        headers=headers,
        content_type="multipart/form-data",
    )


def test_upload_stores_files_and_enqueues_ocr(app, client, student, queue):
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, _files("page1.png", "page2.pdf"))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["ocr_queued"] is True
    assert len(body["file_urls"]) == 2
    assert all(url.startswith("/uploads/") for url in body["file_urls"])
    assert body["request"]["answer_script_urls"] == body["file_urls"]

    for url in body["file_urls"]:
        path = os.path.join(app.config["UPLOAD_FOLDER"], url.rsplit("/", 1)[1])
        assert os.path.exists(path)

    assert queue.jobs[0]["name"] == "process-ocr"
    assert queue.jobs[0]["data"] == {
        "requestId": reval.id,
        "fileUrls": body["file_urls"],
    }
    assert db.session.get(RevaluationRequest, reval.id).answer_script_urls == body["file_urls"]


def test_upload_succeeds_when_enqueue_times_out(app, client, student):
    # Enqueue takes longer than OCR_ENQUEUE_TIMEOUT (0.2s in tests)
    app.extensions["ocr_queue"] = FakeQueue(delay=1.0)
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, _files("page1.jpg"))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["ocr_queued"] is False
    assert len(body["file_urls"]) == 1


def test_upload_succeeds_when_queue_is_down(app, client, student):
    app.extensions["ocr_queue"] = FakeQueue(error=redis.ConnectionError("refused"))
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, _files("page1.jpg"))

    assert resp.status_code == 200
    assert resp.get_json()["ocr_queued"] is False


def test_reupload_enqueues_a_second_job(client, student, queue):
    # No idempotency key on job submission: each upload schedules OCR again
    reval = add_request("stu-1", "CS101")

    _upload(client, reval.id, _files("page1.png"))
    _upload(client, reval.id, _files("page1.png"))

    assert len(queue.jobs) == 2
    assert [j["data"]["requestId"] for j in queue.jobs] == [reval.id, reval.id]


def test_upload_requires_files(client, student, queue):
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, [])

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "No files uploaded"
    assert queue.jobs == []


def test_upload_rejects_more_than_five_files(client, student, queue):
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, _files(*[f"p{i}.png" for i in range(6)]))

    assert resp.status_code == 400
    assert queue.jobs == []


def test_upload_accepts_exactly_five_files(client, student, queue):
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, _files(*[f"p{i}.png" for i in range(5)]))

    assert resp.status_code == 200
    assert len(resp.get_json()["file_urls"]) == 5


def test_upload_requires_request_id(client, student):
    resp = _upload(client, None, _files("page1.png"))

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Request ID is required"


def test_upload_unknown_request_returns_404(client, student, queue):
    resp = _upload(client, 999, _files("page1.png"))

    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Revaluation Request not found"
    assert queue.jobs == []


def test_upload_rejects_unsupported_type(client, student):
    reval = add_request("stu-1", "CS101")

    resp = _upload(client, reval.id, _files("notes.exe"))

    assert resp.status_code == 400


def test_upload_for_someone_elses_request_is_forbidden(client, student):
    add_user("stu-2")
    reval = add_request("stu-2", "CS101")

    resp = _upload(client, reval.id, _files("page1.png"))

    assert resp.status_code == 403


def test_teacher_may_upload_for_any_request(client, student, queue):
    reval = add_request("stu-1", "CS101")

    resp = _upload(
        client, reval.id, _files("page1.png"), headers=auth("tch-1", role="teacher")
    )

    assert resp.status_code == 200
    assert len(queue.jobs) == 1


def test_uploaded_files_are_served(client, student):
    reval = add_request("stu-1", "CS101")
    url = _upload(client, reval.id, _files("page1.pdf")).get_json()["file_urls"][0]

    resp = client.get(url)

    assert resp.status_code == 200
    assert resp.data == b"%PDF-1.4 fake sheet"


def test_upload_while_processing_is_a_conflict(client, student, queue):
    reval = add_request("stu-1", "CS101", status="PROCESSING", urls=["/uploads/old.png"])

    resp = _upload(client, reval.id, _files("new.png"))

    assert resp.status_code == 409
    assert queue.jobs == []
    assert db.session.get(RevaluationRequest, reval.id).answer_script_urls == [
        "/uploads/old.png"
    ]


@pytest.mark.parametrize("status", ["PUBLISHED", "REJECTED"])
def test_decided_request_keeps_its_scripts(app, client, student, queue, status):
    reval = add_request("stu-1", "CS101", status=status, urls=["/uploads/evidence.png"])

    resp = _upload(client, reval.id, _files("replacement.png"))

    assert resp.status_code == 409
    assert queue.jobs == []
    assert db.session.get(RevaluationRequest, reval.id).answer_script_urls == [
        "/uploads/evidence.png"
    ]
    assert not os.path.exists(app.config["UPLOAD_FOLDER"]) or os.listdir(
        app.config["UPLOAD_FOLDER"]
    ) == []


def test_upload_during_teacher_review_requeues_ocr(client, student, queue):
    reval = add_request("stu-1", "CS101", status="TEACHER_REVIEW")

    resp = _upload(client, reval.id, _files("clearer_scan.png"))

    assert resp.status_code == 200
    assert resp.get_json()["ocr_queued"] is True
    assert len(queue.jobs) == 1


def test_failed_commit_removes_saved_files(app, client, student, queue, monkeypatch):
    reval = add_request("stu-1", "CS101")

    def broken_commit():
        raise RuntimeError("database went away")

    monkeypatch.setattr(db.session, "commit", broken_commit)
    resp = _upload(client, reval.id, _files("page1.png", "page2.png"))
    monkeypatch.undo()

    assert resp.status_code == 500
    assert os.listdir(app.config["UPLOAD_FOLDER"]) == []
    assert queue.jobs == []
