# infra.py
import os
import time
import logging
from collections import defaultdict, deque
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from models import utcnow
from queries import delete_expired_revocations

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/upload"


# ---------- Rate limiting middleware (burst: 30 rps; uploads: 10/min) ----------
class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, rps_limit=None, uploads_per_min=None):
        super().__init__(app)
        self.rps_limit = int(os.getenv("RPS_LIMIT", str(rps_limit or 30)))
        self.uploads_per_min = int(
            os.getenv("UPLOADS_PER_MIN", str(uploads_per_min or 10))
        )
        self._req_log = defaultdict(deque)  # key -> deque[timestamps] (1s window)
        self._up_log = defaultdict(deque)  # key -> deque[timestamps] (60s window)

    def _key(self, request: Request) -> str:
        # key by Authorization header if present; otherwise by client IP
        auth = request.headers.get("authorization")
        if auth:
            return auth
        host = request.client.host if request.client else "unknown"
        return f"anon:{host}"

    def _limited(self, message: str, remaining: int, reset: float):
        return JSONResponse(
            {"message": message},
            status_code=429,
            headers={
                "X-RateLimit-Limit": str(self.rps_limit),
                "X-RateLimit-Remaining": str(remaining),
                "X-RateLimit-Reset": str(int(reset)),
            },
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        key = self._key(request)
        now = time.time()

        # --- per-client requests/sec ---
        q = self._req_log[key]
        while q and now - q[0] > 1.0:
            q.popleft()
        if len(q) >= self.rps_limit:
            return self._limited("Rate limit exceeded", 0, max(0.0, 1.0 - (now - q[0])))
        q.append(now)

        # --- per-client upload requests/min ---
        if (
            request.method.upper() == "POST"
            and request.url.path.rstrip("/") == UPLOAD_PATH
        ):
            up = self._up_log[key]
            while up and now - up[0] > 60.0:
                up.popleft()
            if len(up) >= self.uploads_per_min:
                logger.info("Upload rate limit hit for %s", request.client.host if request.client else "?")
                return self._limited(
                    f"Upload rate exceeded ({self.uploads_per_min}/min)",
                    max(0, self.rps_limit - len(q)),
                    max(0.0, 60.0 - (now - up[0])),
                )
            up.append(now)

        resp = await call_next(request)
        remaining = max(0, self.rps_limit - len(self._req_log[key]))
        resp.headers["X-RateLimit-Limit"] = str(self.rps_limit)
        resp.headers["X-RateLimit-Remaining"] = str(remaining)
        resp.headers["X-RateLimit-Reset"] = "1"
        return resp


# ---------- revocation list cleanup (entries whose token already expired) ----------
def purge_expired_revocations() -> int:
    from db import SessionLocal

    with SessionLocal() as db:
        removed = delete_expired_revocations(db, utcnow())
    if removed:
        logger.info("Purged %d expired token revocation(s)", removed)
    return removed
