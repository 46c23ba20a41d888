# errors.py
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PCBInspectError(Exception):
    """Base for request-scoped failures rendered as {message, error?}."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, error: str | None = None, message: str | None = None):
        super().__init__(error or message or self.message)
        self.error = error
        if message is not None:
            self.message = message

    def body(self) -> dict:
        body = {"message": self.message}
        if self.error:
            body["error"] = self.error
        return body


class Unauthenticated(PCBInspectError):
    status_code = 401
    message = "Invalid or expired access token"


class TokenRevoked(Unauthenticated):
    message = "Token is revoked, please login"


class NoImagesProvided(PCBInspectError):
    status_code = 400
    message = "No images uploaded"


class TooManyImages(PCBInspectError):
    status_code = 400
    message = "Too many images in one batch"


class InvalidImage(PCBInspectError):
    status_code = 415
    message = "Only valid JPEG/PNG images are supported"


class ImageTooLarge(PCBInspectError):
    status_code = 413
    message = "Image too large"


class QuotaExceeded(PCBInspectError):
    status_code = 403
    message = "Daily upload limit exceeded"

    def __init__(self, remaining: int, attempted: int):
        super().__init__(
            error=f"You can upload {remaining} more image(s) today, "
            f"but {attempted} were submitted"
        )
        self.remaining = remaining
        self.attempted = attempted

    def body(self) -> dict:
        body = super().body()
        body["remaining"] = self.remaining
        body["attempted"] = self.attempted
        return body


class AssetIngestionFailed(PCBInspectError):
    message = "Error uploading images"


class DetectionServiceError(PCBInspectError):
    message = "Error processing images"


class DetectionServiceUnreachable(DetectionServiceError):
    pass


class DetectionServiceMalformedResponse(DetectionServiceError):
    pass


async def pcb_inspect_error_handler(request: Request, exc: PCBInspectError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=headers)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"message": "Internal server error", "error": str(exc)},
    )
