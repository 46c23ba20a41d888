import io
import os
import tempfile

# must be set before the app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite:///./test_pcb_inspect.db"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="pcb-uploads-")
os.environ["RPS_LIMIT"] = "100000"
os.environ["UPLOADS_PER_MIN"] = "100000"
os.environ["DETECTION_API_URL"] = "http://detector.test/detect"
os.environ.pop("AWS_S3_BUCKET", None)

import httpx
import pytest
from PIL import Image
from fastapi.testclient import TestClient

from app import app
from auth import create_access_token
from db import Base, engine, SessionLocal
from models import DailySummary, DefectPrediction, DetectionRecord, RevokedToken, User
from queries import create_user
from services import detection_client, storage
from services.detection_client import DetectionClient


@pytest.fixture(scope="session", autouse=True)
def create_test_tables():
    """
    Ensure all tables are created before running any tests.
    """
    Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def _truncate_tables():
    with SessionLocal() as db:
        db.query(DefectPrediction).delete()
        db.query(DetectionRecord).delete()
        db.query(DailySummary).delete()
        db.query(RevokedToken).delete()
        db.query(User).delete()
        db.commit()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user(db):
    return create_user(db, "alice@example.com", photos_per_day=10)


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def local_storage(tmp_path, monkeypatch):
    store = storage.LocalStorage(str(tmp_path / "uploads"), "http://assets.test")
    monkeypatch.setattr(storage, "get_storage", lambda: store)
    return store


def stored_files(store: storage.LocalStorage):
    if not store.root.exists():
        return []
    return [p for p in store.root.rglob("*") if p.is_file()]


def ok_item(predictions=(), heatmap="/static/heatmaps/h.png", annotated="/static/annotated/a.png"):
    return {
        "predictions": list(predictions),
        "heatmap_url": heatmap,
        "annotated_image_url": annotated,
    }


class FakeDetector:
    """Routes DetectionClient requests to a canned batch_results list."""

    def __init__(self):
        self.batch_results = None
        self.status_code = 200
        self.raise_error = None
        self.requests = []

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        return httpx.Response(self.status_code, json={"batch_results": self.batch_results})


@pytest.fixture
def detector(monkeypatch):
    fake = FakeDetector()
    client = DetectionClient(
        api_url="http://detector.test/detect",
        asset_base_url="http://detector.test",
        http_client=httpx.Client(transport=httpx.MockTransport(fake.handler)),
    )
    monkeypatch.setattr(detection_client, "get_detection_client", lambda: client)
    return fake


def png_bytes(color="blue"):
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color=color).save(buf, format="PNG")
    return buf.getvalue()


def image_files(n, prefix="board"):
    return [("images", (f"{prefix}{i}.png", png_bytes(), "image/png")) for i in range(n)]
