# services/upload_service.py
import logging
import time
from typing import List

from fastapi import UploadFile
from sqlalchemy.orm import Session

import config
from auth import AuthUser
from errors import NoImagesProvided, QuotaExceeded, TooManyImages
from queries import add_detection_record
from services import detection_client, storage
from services.quota_service import check_quota, user_quota_lock
from services.results_service import serialize_record
from services.validators import (
    read_upload_with_cap,
    sanitize_filename,
    sniff_image,
    validate_mime_and_ext,
)

logger = logging.getLogger(__name__)


def _read_images(files: List[UploadFile]) -> List[storage.ImagePayload]:
    images = []
    for f in files:
        content_type = validate_mime_and_ext(f)
        data = read_upload_with_cap(f)
        sniff_image(data, f.filename or "")
        images.append(
            storage.ImagePayload(
                filename=sanitize_filename(f.filename or "upload.jpg"),
                data=data,
                content_type=content_type,
            )
        )
    return images


def process_upload(db: Session, user: AuthUser, files: List[UploadFile]):
    """
    validate -> ingest -> quota gate -> detect -> persist.
    Assets that end up without a record are deleted before returning.
    """
    files = [f for f in (files or []) if f is not None and f.filename]
    if not files:
        raise NoImagesProvided()
    if len(files) > config.MAX_IMAGES_PER_BATCH:
        raise TooManyImages(f"At most {config.MAX_IMAGES_PER_BATCH} images per upload")

    start_time = time.time()
    images = _read_images(files)
    logger.info("User %s submitted %d image(s)", user.user_id, len(images))

    store = storage.get_storage()
    assets = storage.ingest_batch(store, str(user.user_id), images)

    with user_quota_lock(user.user_id):
        try:
            check_quota(db, user.user_id, attempted=len(assets))
        except QuotaExceeded as e:
            logger.info(
                "Quota rejected user %s: %d attempted, %d remaining",
                user.user_id, e.attempted, e.remaining,
            )
            storage.discard_assets(store, [a.key for a in assets])
            raise

        client = detection_client.get_detection_client()
        try:
            detections = client.detect(images, [a.url for a in assets])
        except Exception:
            logger.exception("Detection failed for user %s", user.user_id)
            storage.discard_assets(store, [a.key for a in assets])
            raise

        records, orphaned = [], []
        for img, asset, det in zip(images, assets, detections):
            if not det.ok:
                logger.warning("Detection error for %s: %s", img.filename, det.error)
                orphaned.append(asset.key)
                continue
            records.append(
                add_detection_record(
                    db,
                    user_id=user.user_id,
                    filename=img.filename,
                    image_url=det.image_url or asset.url,
                    heatmap_url=det.heatmap_url,
                    annotated_image_url=det.annotated_image_url,
                    predictions=det.predictions,
                )
            )
        try:
            db.commit()
        except Exception:
            db.rollback()
            storage.discard_assets(store, [a.key for a in assets])
            raise

    storage.discard_assets(store, orphaned)
    for r in records:
        db.refresh(r)

    return {
        "message": "Detection completed and results stored.",
        "results": [serialize_record(r) for r in records],
        "accepted": len(records),
        "failed": len(orphaned),
        "time_took": round(time.time() - start_time, 2),
    }
