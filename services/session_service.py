from sqlalchemy.orm import Session
from auth import AuthUser
from queries import revoke_token


def logout_service(user: AuthUser, db: Session):
    revoke_token(db, user.token_id, user.token_expires_at)
    return {"message": "Logged out successfully"}
