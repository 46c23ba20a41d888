from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from db import get_db
from auth import AuthUser, get_current_user
from services.results_service import get_results_service

router = APIRouter()


@router.get("/results")
def get_results(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_results_service(user, db)
