from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from db import get_db
from auth import AuthUser, get_current_user
from services.session_service import logout_service

router = APIRouter()


@router.post("/logout")
def logout(user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return logout_service(user, db)
