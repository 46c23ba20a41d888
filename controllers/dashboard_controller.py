from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from db import get_db
from auth import AuthUser, get_current_user
from services.dashboard_service import get_dashboard_service

router = APIRouter()


@router.get("/dashboard")
def get_dashboard(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_dashboard_service(user, db)
