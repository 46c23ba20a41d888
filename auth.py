# auth.py
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

import config
from db import get_db
from errors import TokenRevoked, Unauthenticated
from queries import get_user, is_token_revoked

security = HTTPBearer(auto_error=False)


@dataclass
class AuthUser:
    user_id: int
    photos_per_day: int
    token_id: str
    token_expires_at: datetime | None


def create_access_token(user_id: int, ttl_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else config.ACCESS_TOKEN_TTL_MINUTES
    payload = {
        "sub": str(user_id),
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(minutes=ttl),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise Unauthenticated(str(e))
    if not claims.get("sub") or not claims.get("jti"):
        raise Unauthenticated("Token is missing required claims")
    return claims


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> AuthUser:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated(message="No access token found, please login")

    claims = decode_access_token(credentials.credentials)
    if is_token_revoked(db, claims["jti"]):
        raise TokenRevoked()

    try:
        user_id = int(claims["sub"])
    except ValueError:
        raise Unauthenticated("Malformed subject claim")
    user = get_user(db, user_id)
    if user is None:
        raise Unauthenticated(message="User not found, please sign up")

    exp = claims.get("exp")
    expires_at = (
        datetime.fromtimestamp(exp, timezone.utc).replace(tzinfo=None) if exp else None
    )
    return AuthUser(
        user_id=user.id,
        photos_per_day=user.photos_per_day,
        token_id=claims["jti"],
        token_expires_at=expires_at,
    )
