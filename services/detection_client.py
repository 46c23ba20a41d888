"""HTTP client for the external PCB defect-detection service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence
from urllib.parse import urlsplit

import httpx

import config
from errors import DetectionServiceMalformedResponse, DetectionServiceUnreachable
from services.storage import ImagePayload

logger = logging.getLogger(__name__)

_BOX_KEYS = ("x_min", "y_min", "x_max", "y_max")


@dataclass
class ImageDetection:
    """Outcome for one image: predictions, or an error string."""

    predictions: list[dict] = field(default_factory=list)
    image_url: Optional[str] = None
    heatmap_url: Optional[str] = None
    annotated_image_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_asset_url(url: Optional[str], base_url: str) -> Optional[str]:
    """
    Make an asset URL absolute by prefixing the detection service's origin.
    URLs that already carry a host are returned unchanged, so applying this
    twice gives the same result.
    """
    if not url:
        return None
    if urlsplit(url).netloc or not base_url:
        return url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def _to_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def parse_prediction(raw: dict) -> dict:
    box = raw.get("bounding_box")
    if not isinstance(box, dict):
        box = raw
    class_id = raw.get("class_id")
    return {
        "class_id": int(class_id) if class_id is not None else None,
        "class_name": str(raw.get("class_name") or "unknown"),
        "confidence": _to_float(raw.get("confidence")),
        **{k: _to_float(box.get(k)) for k in _BOX_KEYS},
    }


def parse_batch_item(raw) -> ImageDetection:
    if not isinstance(raw, dict):
        return ImageDetection(error="Malformed result item")
    if raw.get("error"):
        return ImageDetection(error=str(raw["error"]))
    preds = raw.get("predictions")
    if not isinstance(preds, list):
        return ImageDetection(error="Result item has no predictions list")
    try:
        predictions = [parse_prediction(p) for p in preds if isinstance(p, dict)]
    except (TypeError, ValueError) as e:
        return ImageDetection(error=f"Malformed prediction: {e}")
    return ImageDetection(
        predictions=predictions,
        image_url=raw.get("image_url"),
        heatmap_url=raw.get("heatmap_url"),
        annotated_image_url=raw.get("annotated_image_url"),
    )


class DetectionClient:
    def __init__(
        self,
        api_url: str,
        asset_base_url: str,
        transport: str = "multipart",
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ):
        if transport not in ("multipart", "json"):
            raise ValueError(f"Unsupported detection transport: {transport}")
        self.api_url = api_url
        self.asset_base_url = asset_base_url
        self.transport = transport
        self._http = http_client or httpx.Client(timeout=timeout)

    def close(self):
        self._http.close()

    def _post(self, images: Sequence[ImagePayload], urls: Sequence[str]) -> httpx.Response:
        if self.transport == "json":
            return self._http.post(self.api_url, json={"images": list(urls)})
        files = [
            ("images", (img.filename, img.data, img.content_type)) for img in images
        ]
        return self._http.post(self.api_url, files=files)

    def detect(self, images: Sequence[ImagePayload], urls: Sequence[str]) -> list[ImageDetection]:
        """
        Submit one batch. Returns one ImageDetection per input, in input order.
        Transport and shape failures raise; per-image failures do not.
        """
        logger.info("Sending %d image(s) to detection API (%s)", len(urls), self.transport)
        try:
            resp = self._post(images, urls)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DetectionServiceUnreachable(
                f"Detection API returned {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            raise DetectionServiceUnreachable(f"Detection API request failed: {e}")

        try:
            payload = resp.json()
        except ValueError:
            raise DetectionServiceMalformedResponse("Detection API returned non-JSON body")

        batch = payload.get("batch_results") if isinstance(payload, dict) else None
        if not isinstance(batch, list):
            raise DetectionServiceMalformedResponse("Detection API response has no batch_results")
        if len(batch) != len(urls):
            raise DetectionServiceMalformedResponse(
                f"Detection API returned {len(batch)} results for {len(urls)} images"
            )

        results = [parse_batch_item(item) for item in batch]
        for r in results:
            if r.ok:
                r.heatmap_url = normalize_asset_url(r.heatmap_url, self.asset_base_url)
                r.annotated_image_url = normalize_asset_url(r.annotated_image_url, self.asset_base_url)
                r.image_url = normalize_asset_url(r.image_url, self.asset_base_url)
        return results


_client: DetectionClient | None = None


def get_detection_client() -> DetectionClient:
    global _client
    if _client is None:
        _client = DetectionClient(
            api_url=config.DETECTION_API_URL,
            asset_base_url=config.DETECTION_ASSET_BASE_URL,
            transport=config.DETECTION_TRANSPORT,
            timeout=config.DETECTION_TIMEOUT,
        )
    return _client


def close_detection_client():
    global _client
    if _client is not None:
        _client.close()
    _client = None
