from sqlalchemy.orm import Session
from auth import AuthUser
from queries import get_photos_per_day
from services.quota_service import remaining_uploads


def get_remaining_uploads_service(user: AuthUser, db: Session):
    quota = get_photos_per_day(db, user.user_id)
    return {"remainingUploads": remaining_uploads(db, user.user_id, quota)}
