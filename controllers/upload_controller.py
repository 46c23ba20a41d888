from typing import List, Optional
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session
from db import get_db
from auth import AuthUser, get_current_user
from services.upload_service import process_upload
from services.remaining_service import get_remaining_uploads_service

router = APIRouter()


@router.post("/upload")
def upload_images(
    images: Optional[List[UploadFile]] = File(None),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return process_upload(db, user, images or [])


@router.get("/remaining-uploads")
def get_remaining_uploads(
    user: AuthUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    return get_remaining_uploads_service(user, db)
