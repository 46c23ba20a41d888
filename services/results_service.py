from sqlalchemy.orm import Session

import config
from auth import AuthUser
from models import DetectionRecord
from queries import get_records_for_user
from services.detection_client import normalize_asset_url


def _iso(ts):
    return ts.isoformat() + "Z" if ts else None


def serialize_prediction(p) -> dict:
    return {
        "class_id": p.class_id,
        "class_name": p.class_name,
        "confidence": p.confidence,
        "x_min": p.x_min,
        "y_min": p.y_min,
        "x_max": p.x_max,
        "y_max": p.y_max,
    }


def serialize_record(record: DetectionRecord) -> dict:
    base = config.DETECTION_ASSET_BASE_URL
    return {
        "id": record.id,
        "filename": record.filename,
        "image_url": record.image_url,
        "heatmap_url": normalize_asset_url(record.heatmap_url, base),
        "annotated_image_url": normalize_asset_url(record.annotated_image_url, base),
        "predictions": [serialize_prediction(p) for p in record.predictions],
        "createdAt": _iso(record.created_at),
    }


def get_results_service(user: AuthUser, db: Session):
    records = get_records_for_user(db, user.user_id)
    return {
        "message": "Detection results retrieved",
        "results": [serialize_record(r) for r in records],
    }
