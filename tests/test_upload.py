from unittest.mock import patch

import httpx

from conftest import image_files, ok_item, stored_files
from models import DetectionRecord, User
from services import storage

SCRATCH = {"class_id": 1, "class_name": "scratch", "confidence": 0.91,
           "x_min": 1, "y_min": 2, "x_max": 30, "y_max": 40}


def _set_quota(db, user, quota):
    db.query(User).filter_by(id=user.id).update({"photos_per_day": quota})
    db.commit()


def test_upload_persists_records_and_normalizes_urls(client, db, user, auth_headers, local_storage, detector):
    detector.batch_results = [ok_item([SCRATCH]), ok_item([], heatmap="http://cdn.test/h.png")]

    r = client.post("/upload", files=image_files(2), headers=auth_headers)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["accepted"] == 2 and body["failed"] == 0
    first, second = body["results"]
    assert first["filename"] == "board0.png"
    assert first["predictions"][0]["class_name"] == "scratch"
    assert first["heatmap_url"] == "http://detector.test/static/heatmaps/h.png"
    assert first["annotated_image_url"] == "http://detector.test/static/annotated/a.png"
    assert first["image_url"].startswith("http://assets.test/uploads/")
    assert second["heatmap_url"] == "http://cdn.test/h.png"
    assert second["predictions"] == []

    assert db.query(DetectionRecord).filter_by(user_id=user.id).count() == 2
    assert len(stored_files(local_storage)) == 2
    assert len(detector.requests) == 1


def test_quota_rejection_rolls_back_assets(client, db, user, auth_headers, local_storage, detector):
    _set_quota(db, user, 2)
    detector.batch_results = [ok_item()] * 3

    r = client.post("/upload", files=image_files(3), headers=auth_headers)

    assert r.status_code == 403
    body = r.json()
    assert body["remaining"] == 2
    assert body["attempted"] == 3
    assert "message" in body
    assert db.query(DetectionRecord).count() == 0
    assert stored_files(local_storage) == []
    assert detector.requests == []


def test_batch_within_quota_then_next_rejected(client, db, user, auth_headers, local_storage, detector):
    _set_quota(db, user, 3)
    detector.batch_results = [ok_item()] * 2
    assert client.post("/upload", files=image_files(2), headers=auth_headers).status_code == 200

    r = client.post("/upload", files=image_files(2), headers=auth_headers)
    assert r.status_code == 403
    assert r.json()["remaining"] == 1
    assert db.query(DetectionRecord).count() == 2

    remaining = client.get("/remaining-uploads", headers=auth_headers)
    assert remaining.json() == {"remainingUploads": 1}


def test_compensation_failure_does_not_mask_quota_error(client, db, user, auth_headers, local_storage, detector):
    _set_quota(db, user, 0)
    with patch.object(local_storage, "delete_many", side_effect=OSError("disk gone")):
        r = client.post("/upload", files=image_files(1), headers=auth_headers)
    assert r.status_code == 403
    assert r.json()["remaining"] == 0


def test_per_image_errors_are_not_persisted(client, db, user, auth_headers, local_storage, detector):
    detector.batch_results = [ok_item([SCRATCH]), {"error": "unreadable image"}, ok_item()]

    r = client.post("/upload", files=image_files(3), headers=auth_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["accepted"] == 2
    assert body["failed"] == 1
    assert [res["filename"] for res in body["results"]] == ["board0.png", "board2.png"]
    assert db.query(DetectionRecord).count() == 2
    assert len(stored_files(local_storage)) == 2


def test_detection_service_down_persists_nothing(client, db, user, auth_headers, local_storage, detector):
    detector.raise_error = httpx.ConnectError("connection refused")

    r = client.post("/upload", files=image_files(2), headers=auth_headers)

    assert r.status_code == 500
    assert r.json()["message"] == "Error processing images"
    assert "error" in r.json()
    assert db.query(DetectionRecord).count() == 0
    assert stored_files(local_storage) == []


def test_malformed_detection_response(client, db, user, auth_headers, local_storage, detector):
    detector.batch_results = None

    r = client.post("/upload", files=image_files(1), headers=auth_headers)

    assert r.status_code == 500
    assert db.query(DetectionRecord).count() == 0


def test_ingestion_failure_aborts_before_quota(client, db, user, auth_headers, local_storage, detector):
    real_save = local_storage.save
    calls = []

    def flaky_save(owner, filename, data, content_type=None):
        calls.append(filename)
        if filename == "board1.png":
            raise OSError("bucket unavailable")
        return real_save(owner, filename, data, content_type)

    with patch.object(local_storage, "save", side_effect=flaky_save), \
            patch("services.upload_service.check_quota") as mock_quota:
        r = client.post("/upload", files=image_files(3), headers=auth_headers)

    assert r.status_code == 500
    assert r.json()["message"] == "Error uploading images"
    mock_quota.assert_not_called()
    assert len(calls) == 3
    assert stored_files(local_storage) == []
    assert detector.requests == []


def test_no_images(client, auth_headers, local_storage, detector):
    r = client.post("/upload", headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"message": "No images uploaded"}


def test_rejects_non_image(client, db, auth_headers, local_storage, detector):
    files = [("images", ("notes.png", b"definitely not a png", "image/png"))]
    r = client.post("/upload", files=files, headers=auth_headers)
    assert r.status_code == 415
    assert stored_files(local_storage) == []


def test_rejects_oversized_batch(client, auth_headers, local_storage, detector, monkeypatch):
    import config

    monkeypatch.setattr(config, "MAX_IMAGES_PER_BATCH", 2)
    r = client.post("/upload", files=image_files(3), headers=auth_headers)
    assert r.status_code == 400


def test_upload_requires_auth(client, local_storage, detector):
    r = client.post("/upload", files=image_files(1))
    assert r.status_code == 401
    assert stored_files(local_storage) == []


def test_ingest_batch_keeps_input_order(tmp_path):
    store = storage.LocalStorage(str(tmp_path), "http://assets.test")
    images = [storage.ImagePayload(f"p{i}.png", bytes([i]), "image/png") for i in range(5)]
    assets = storage.ingest_batch(store, "7", images)
    assert [a.key.rsplit("-", 1)[1] for a in assets] == [f"p{i}.png" for i in range(5)]
    assert all(a.key.startswith("7/original/") for a in assets)
