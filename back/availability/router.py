"""
상담사 가용 시간 API 라우터
"""

from datetime import date, datetime
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from database import get_db
from models.user import User, UserRole
from schemas.availability import (
    OpenWindow,
    OpenWindowListResponse,
    TemplateCreate,
    TemplateListResponse,
    TemplateResponse,
    TemplateUpdate,
)
from auth.dependencies import get_current_active_user, require_role
from config.dependencies import get_now
from config import settings
from availability import service
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="availability", level=logging.INFO)

router = APIRouter(prefix="/availability", tags=["Availability"])

psychologist_only = require_role(UserRole.PSYCHOLOGIST)


@router.get("", response_model=OpenWindowListResponse)
def get_open_windows(
    psychologist_id: int,
    from_date: date | None = None,
    days: int = Query(default=7, ge=1, le=31),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """상담사의 예약 가능 구간 조회"""
    start_date = from_date or now.astimezone(settings.SCHEDULING_TIMEZONE).date()
    windows = service.open_windows(db, psychologist_id, start_date, days, now)
    return OpenWindowListResponse(
        psychologist_id=psychologist_id,
        windows=[OpenWindow(**w) for w in windows],
        message=None if windows else "No availability in the requested period",
    )


@router.get("/psychologist", response_model=TemplateListResponse)
def get_my_templates(
    current_user: User = Depends(psychologist_only),
    db: Session = Depends(get_db),
):
    """내 활성 가용 시간 목록"""
    templates = service.list_active_templates(db, current_user.id)
    return TemplateListResponse(
        total=len(templates),
        availability=[TemplateResponse.model_validate(t) for t in templates],
    )


@router.post("/psychologist", response_model=TemplateResponse)
def create_template(
    data: TemplateCreate,
    current_user: User = Depends(psychologist_only),
    db: Session = Depends(get_db),
):
    """가용 시간 등록"""
    logger.info(f"Creating template: psychologist_id={current_user.id}, days={data.days_of_week}")
    return service.create_template(
        db, current_user.id, data.days_of_week, data.start_time, data.end_time
    )


@router.put("/psychologist", response_model=TemplateResponse)
def update_template(
    data: TemplateUpdate,
    current_user: User = Depends(psychologist_only),
    db: Session = Depends(get_db),
):
    """가용 시간 수정"""
    return service.update_template(
        db, data.id, current_user.id, data.days_of_week, data.start_time, data.end_time
    )


@router.delete("/psychologist", response_model=TemplateResponse)
def delete_template(
    id: int,
    current_user: User = Depends(psychologist_only),
    db: Session = Depends(get_db),
):
    """가용 시간 삭제 (비활성화)"""
    logger.info(f"Deactivating template: id={id}, psychologist_id={current_user.id}")
    return service.deactivate_template(db, id, current_user.id)
