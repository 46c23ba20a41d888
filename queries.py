from datetime import datetime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from models import User, RevokedToken, DetectionRecord, DefectPrediction, DailySummary


# ---------- users / tokens ----------
def get_user(db: Session, user_id: int):
    return db.query(User).filter_by(id=user_id).first()


def create_user(db: Session, email: str, plan: str = "basic", photos_per_day: int = 10):
    user = User(email=email, plan=plan, photos_per_day=photos_per_day)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_photos_per_day(db: Session, user_id: int) -> int:
    row = db.query(User.photos_per_day).filter_by(id=user_id).first()
    return row[0] if row else 0


def is_token_revoked(db: Session, token_id: str) -> bool:
    return db.query(RevokedToken).filter_by(token_id=token_id).first() is not None


def revoke_token(db: Session, token_id: str, expires_at: datetime | None):
    if is_token_revoked(db, token_id):
        return
    db.add(RevokedToken(token_id=token_id, expires_at=expires_at))
    try:
        db.commit()
    except IntegrityError:
        # concurrent logout of the same token
        db.rollback()


def delete_expired_revocations(db: Session, now: datetime) -> int:
    removed = (
        db.query(RevokedToken)
        .filter(RevokedToken.expires_at.isnot(None), RevokedToken.expires_at < now)
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed


# ---------- detection records ----------
def count_records_between(db: Session, user_id: int, start: datetime, end: datetime) -> int:
    return (
        db.query(DetectionRecord)
        .filter(
            DetectionRecord.user_id == user_id,
            DetectionRecord.created_at >= start,
            DetectionRecord.created_at < end,
        )
        .count()
    )


def add_detection_record(
    db: Session,
    user_id: int,
    filename: str,
    image_url: str,
    heatmap_url: str | None,
    annotated_image_url: str | None,
    predictions: list[dict],
) -> DetectionRecord:
    """Stage a record and its predictions; the caller commits the batch."""
    record = DetectionRecord(
        user_id=user_id,
        filename=filename,
        image_url=image_url,
        heatmap_url=heatmap_url,
        annotated_image_url=annotated_image_url,
    )
    for position, p in enumerate(predictions):
        record.predictions.append(DefectPrediction(position=position, **p))
    db.add(record)
    return record


def get_records_for_user(db: Session, user_id: int):
    return (
        db.query(DetectionRecord)
        .filter(DetectionRecord.user_id == user_id)
        .order_by(DetectionRecord.created_at.desc(), DetectionRecord.id.desc())
        .all()
    )


def get_recent_records(db: Session, user_id: int, limit: int = 3):
    return (
        db.query(DetectionRecord)
        .filter(DetectionRecord.user_id == user_id)
        .order_by(DetectionRecord.created_at.desc(), DetectionRecord.id.desc())
        .limit(limit)
        .all()
    )


def get_prediction_class_names(db: Session, user_id: int):
    """One row per (record_id, class_name) prediction of the user's records."""
    return (
        db.query(DefectPrediction.record_id, DefectPrediction.class_name)
        .join(DetectionRecord, DetectionRecord.id == DefectPrediction.record_id)
        .filter(DetectionRecord.user_id == user_id)
        .all()
    )


def count_records(db: Session, user_id: int) -> int:
    return db.query(DetectionRecord).filter_by(user_id=user_id).count()


# ---------- daily summaries ----------
def upsert_daily_summary(db: Session, user_id: int, date: str, defective_percentage: float):
    row = db.query(DailySummary).filter_by(user_id=user_id, date=date).first()
    if row is None:
        db.add(DailySummary(user_id=user_id, date=date, defective_percentage=defective_percentage))
        try:
            db.commit()
            return
        except IntegrityError:
            # another request inserted the same (user_id, date) first
            db.rollback()
            row = db.query(DailySummary).filter_by(user_id=user_id, date=date).one()
    row.defective_percentage = defective_percentage
    db.commit()


def get_daily_summaries_since(db: Session, user_id: int, since_date: str):
    return (
        db.query(DailySummary)
        .filter(DailySummary.user_id == user_id, DailySummary.date >= since_date)
        .order_by(DailySummary.date.asc())
        .all()
    )
