"""
가용 시간(AvailabilityTemplate) 스키마
"""

from pydantic import BaseModel, Field, field_serializer
import datetime
from typing import Optional


class TemplateCreate(BaseModel):
    """템플릿 생성 스키마 (시간 형식 검증은 서비스 계층에서 수행)"""
    days_of_week: list[int] = Field(..., description="요일 목록 (0=일요일 ... 6=토요일)")
    start_time: str = Field(..., description="시작 시각 HH:MM (24시간제)")
    end_time: str = Field(..., description="종료 시각 HH:MM (24시간제)")


class TemplateUpdate(TemplateCreate):
    """템플릿 수정 스키마"""
    id: int


class TemplateResponse(BaseModel):
    """템플릿 응답 스키마"""
    id: int
    psychologist_id: int
    days_of_week: list[int]
    start_time: datetime.time
    end_time: datetime.time
    is_active: bool

    class Config:
        from_attributes = True

    @field_serializer("start_time", "end_time")
    def _hhmm(self, value: datetime.time) -> str:
        return value.strftime("%H:%M")


class TemplateListResponse(BaseModel):
    total: int
    availability: list[TemplateResponse]


class OpenWindow(BaseModel):
    """예약 가능한 구체적 시간 구간"""
    template_id: int
    start: datetime.datetime
    end: datetime.datetime


class OpenWindowListResponse(BaseModel):
    psychologist_id: int
    windows: list[OpenWindow]
    message: Optional[str] = None
