# services/plan_service.py
import logging

from sqlalchemy.orm import Session

from queries import get_user

logger = logging.getLogger(__name__)

PLANS = {
    "basic": {"photos_per_day": 10},
    "silver": {"photos_per_day": 75},
    "gold": {"photos_per_day": 200},
    "diamond": {"photos_per_day": 500},
}
DEFAULT_PLAN = "basic"


def photos_per_day_for(plan: str) -> int:
    if plan not in PLANS:
        raise ValueError(f"Unknown plan: {plan}")
    return PLANS[plan]["photos_per_day"]


def apply_subscription(db: Session, user_id: int, plan: str):
    """Called by the billing side once a checkout for `plan` completes."""
    quota = photos_per_day_for(plan)
    user = get_user(db, user_id)
    if user is None:
        raise ValueError(f"User {user_id} not found")
    user.plan = plan
    user.photos_per_day = quota
    user.is_premium = True
    user.subscription_status = "subscribed"
    db.commit()
    logger.info("User %s subscribed to %s (%d photos/day)", user_id, plan, quota)
    return user


def cancel_subscription(db: Session, user_id: int):
    user = get_user(db, user_id)
    if user is None:
        return None
    user.plan = DEFAULT_PLAN
    user.photos_per_day = photos_per_day_for(DEFAULT_PLAN)
    user.is_premium = False
    user.subscription_status = "canceled"
    db.commit()
    logger.info("User %s subscription canceled", user_id)
    return user
