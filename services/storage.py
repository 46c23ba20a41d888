# services/storage.py
from __future__ import annotations

import io
import logging
import mimetypes
import os
import pathlib
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import boto3

import config
from errors import AssetIngestionFailed

logger = logging.getLogger(__name__)

# ---- Configuration from environment ----
AWS_REGION = os.getenv("AWS_REGION")
AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET")

AWS_S3_SSE = os.getenv("AWS_S3_SSE")  # "AES256" or "aws:kms"
AWS_S3_SSE_KMS_KEY_ID = os.getenv("AWS_S3_SSE_KMS_KEY_ID")

MAX_WORKERS = 8


@dataclass
class StoredAsset:
    key: str
    url: str


@dataclass
class ImagePayload:
    filename: str
    data: bytes
    content_type: str


def guess_content_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


def build_original_key(owner: str, filename: str) -> str:
    """<owner>/original/<uuid>-<basename>"""
    name = pathlib.PurePosixPath(filename).name or "upload.jpg"
    return f"{str(owner).strip().strip('/')}/original/{uuid.uuid4().hex}-{name}"


class S3Storage:
    """Stores assets in a bucket; with an instance role boto3 finds creds itself."""

    def __init__(self, bucket: str, region: Optional[str] = None, public_base_url: Optional[str] = None):
        if not bucket:
            raise RuntimeError("AWS_S3_BUCKET is not set. Provide it via environment variable.")
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url
        self._client = None

    def s3(self):
        if self._client is None:
            self._client = (
                boto3.client("s3", region_name=self.region)
                if self.region
                else boto3.client("s3")
            )
        return self._client

    def _extra_args(self, content_type: Optional[str]) -> Optional[dict]:
        extra = {}
        if content_type:
            extra["ContentType"] = content_type
        if AWS_S3_SSE:
            extra["ServerSideEncryption"] = AWS_S3_SSE
            if AWS_S3_SSE == "aws:kms" and AWS_S3_SSE_KMS_KEY_ID:
                extra["SSEKMSKeyId"] = AWS_S3_SSE_KMS_KEY_ID
        return extra or None

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def save(self, owner: str, filename: str, data: bytes, content_type: Optional[str] = None) -> StoredAsset:
        key = build_original_key(owner, filename)
        self.s3().upload_fileobj(
            Fileobj=io.BytesIO(data),
            Bucket=self.bucket,
            Key=key,
            ExtraArgs=self._extra_args(content_type or guess_content_type(filename)),
        )
        return StoredAsset(key=key, url=self.url_for(key))

    def delete_many(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        resp = self.s3().delete_objects(
            Bucket=self.bucket,
            Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
        )
        errors = resp.get("Errors") or []
        if errors:
            raise RuntimeError(f"S3 refused to delete {len(errors)} object(s): {errors[0].get('Key')}")


class LocalStorage:
    """Writes assets under a directory that the app serves at /uploads."""

    def __init__(self, root: str, public_base_url: str):
        self.root = pathlib.Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> pathlib.Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Key escapes upload root: {key}")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/uploads/{key}"

    def save(self, owner: str, filename: str, data: bytes, content_type: Optional[str] = None) -> StoredAsset:
        key = build_original_key(owner, filename)
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return StoredAsset(key=key, url=self.url_for(key))

    def delete_many(self, keys: Sequence[str]) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)


_storage = None


def get_storage():
    global _storage
    if _storage is None:
        if AWS_S3_BUCKET:
            _storage = S3Storage(AWS_S3_BUCKET, AWS_REGION, config.AWS_S3_PUBLIC_BASE_URL)
        else:
            _storage = LocalStorage(config.UPLOAD_DIR, config.PUBLIC_BASE_URL)
    return _storage


# -------------------- Batch helpers --------------------


def ingest_batch(storage, owner: str, images: Sequence[ImagePayload]) -> List[StoredAsset]:
    """
    Save every image concurrently, preserving input order.
    All-or-nothing: if any save fails the saved subset is removed and
    AssetIngestionFailed is raised.
    """
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(images) or 1)) as pool:
        futures = [
            pool.submit(storage.save, owner, img.filename, img.data, img.content_type)
            for img in images
        ]
        outcomes = []
        for img, fut in zip(images, futures):
            try:
                outcomes.append((img, fut.result(), None))
            except Exception as e:
                outcomes.append((img, None, e))

    failed = [(img, err) for img, _, err in outcomes if err is not None]
    if failed:
        saved = [asset for _, asset, _ in outcomes if asset is not None]
        for img, err in failed:
            logger.error("Asset ingestion failed for %s: %s", img.filename, err)
        discard_assets(storage, [a.key for a in saved])
        raise AssetIngestionFailed(
            f"{len(failed)} of {len(images)} image(s) could not be stored"
        )
    return [asset for _, asset, _ in outcomes]


def discard_assets(storage, keys: Sequence[str]) -> None:
    """Best-effort compensation; failures are logged and never raised."""
    if not keys:
        return
    try:
        storage.delete_many(list(keys))
    except Exception:
        logger.warning("Failed to delete %d orphaned asset(s)", len(keys), exc_info=True)
