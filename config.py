# config.py
import os
from urllib.parse import urlsplit

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./pcb_inspect.db"

# ---- Identity ----
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))

# Daily windows and DailySummary dates are computed in this zone
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "UTC")

# ---- Detection service ----
DETECTION_API_URL = os.getenv("DETECTION_API_URL", "http://localhost:5000/detect")
DETECTION_TRANSPORT = os.getenv("DETECTION_TRANSPORT", "multipart").lower()
DETECTION_TIMEOUT = float(os.getenv("DETECTION_TIMEOUT", "60"))


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}" if parts.netloc else ""


DETECTION_ASSET_BASE_URL = os.getenv("DETECTION_ASSET_BASE_URL") or _origin(
    DETECTION_API_URL
)

# ---- Storage ----
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080")
AWS_S3_PUBLIC_BASE_URL = os.getenv("AWS_S3_PUBLIC_BASE_URL")

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
MAX_IMAGES_PER_BATCH = int(os.getenv("MAX_IMAGES_PER_BATCH", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
