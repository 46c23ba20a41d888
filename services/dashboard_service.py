from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

import config
from auth import AuthUser
from queries import (
    count_records,
    get_daily_summaries_since,
    get_prediction_class_names,
    get_recent_records,
    upsert_daily_summary,
)
from services.detection_client import normalize_asset_url
from services.quota_service import local_now

RECENT_LIMIT = 3
TREND_DAYS = 7


def compute_defect_stats(total_records: int, prediction_rows) -> dict:
    """
    prediction_rows: (record_id, class_name) for every stored prediction.
    A record with no prediction rows is a good unit.
    """
    class_counts = Counter(name for _, name in prediction_rows)
    defective = len({record_id for record_id, _ in prediction_rows})
    good = total_records - defective
    total_defects = len(prediction_rows)

    denominator = total_defects or 1
    percentages = [
        {"name": name, "percentage": f"{count / denominator * 100:.2f}"}
        for name, count in class_counts.items()
    ]
    return {
        "goodPCBs": good,
        "defectivePCBs": defective,
        "totalDefects": total_defects,
        "defect_percentages": percentages,
    }


def defective_rate(good: int, defective: int) -> float:
    return round(defective / ((good + defective) or 1) * 100, 2)


def _recent_defects(records) -> list[dict]:
    base = config.DETECTION_ASSET_BASE_URL
    return [
        {
            "pcb_id": f"PCB #{index + 1}",
            "id": r.id,
            "filename": r.filename,
            "defects": [p.class_name for p in r.predictions],
            "image_url": r.image_url,
            "heatmap_url": normalize_asset_url(r.heatmap_url, base),
            "annotated_image_url": normalize_asset_url(r.annotated_image_url, base),
            "createdAt": r.created_at.isoformat() + "Z" if r.created_at else None,
        }
        for index, r in enumerate(records)
    ]


def _weekly_summary(rows) -> list[dict]:
    return [
        {
            "date": row.date,
            "day": datetime.strptime(row.date, "%Y-%m-%d").strftime("%a"),
            "faultRate": float(row.defective_percentage),
        }
        for row in rows
    ]


def get_dashboard_service(user: AuthUser, db: Session, now: datetime | None = None):
    """
    Builds the dashboard from the user's full history. Also upserts today's
    DailySummary row, so this read path writes.

    defective_percentage_today is the all-time defective rate as of today,
    not a rate over today's uploads only.
    """
    stats = compute_defect_stats(
        count_records(db, user.user_id),
        get_prediction_class_names(db, user.user_id),
    )
    rate = defective_rate(stats["goodPCBs"], stats["defectivePCBs"])

    today = local_now(now).date()
    upsert_daily_summary(db, user.user_id, today.isoformat(), rate)
    since = (today - timedelta(days=TREND_DAYS)).isoformat()
    weekly = get_daily_summaries_since(db, user.user_id, since)

    return {
        "summary": {
            "defect_percentages": stats["defect_percentages"],
            "defective_chart": [
                {"name": "Good PCBs", "value": stats["goodPCBs"]},
                {"name": "Defective PCBs", "value": stats["defectivePCBs"]},
            ],
            "total_defects": stats["totalDefects"],
            "recent_defects": _recent_defects(
                get_recent_records(db, user.user_id, RECENT_LIMIT)
            ),
            "defective_percentage_today": rate,
            "weekly_summary": _weekly_summary(weekly),
        }
    }
