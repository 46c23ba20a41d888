# models.py

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """
    Model for users table

    Owned by the account/billing side; the detection pipeline only reads
    the plan-derived quota.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    plan = Column(String, nullable=False, default="basic")
    photos_per_day = Column(Integer, nullable=False, default=10)
    is_premium = Column(Boolean, nullable=False, default=False)
    subscription_status = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class RevokedToken(Base):
    """
    Model for revoked_tokens table (logout blacklist keyed by JWT jti)
    """
    __tablename__ = "revoked_tokens"

    token_id = Column(String, primary_key=True)
    expires_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, default=utcnow)


class DetectionRecord(Base):
    """
    Model for detection_records table

    One row per successfully analyzed image. Append-only.
    """
    __tablename__ = "detection_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    filename = Column(String)
    image_url = Column(String)
    heatmap_url = Column(String, nullable=True)
    annotated_image_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    predictions = relationship(
        "DefectPrediction",
        order_by="DefectPrediction.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class DefectPrediction(Base):
    """
    Model for defect_predictions table
    """
    __tablename__ = "defect_predictions"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(Integer, ForeignKey("detection_records.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    class_id = Column(Integer, nullable=True)
    class_name = Column(String)
    confidence = Column(Float)
    x_min = Column(Float)
    y_min = Column(Float)
    x_max = Column(Float)
    y_max = Column(Float)


class DailySummary(Base):
    """
    Model for daily_summaries table

    One upsertable row per (user_id, date); date is YYYY-MM-DD in APP_TIMEZONE.
    """
    __tablename__ = "daily_summaries"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_summary_user_date"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(String(10), nullable=False)
    defective_percentage = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
