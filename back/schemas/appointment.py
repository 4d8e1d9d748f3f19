"""
상담 예약(Appointment) 스키마
"""

from pydantic import BaseModel, Field, EmailStr, AwareDatetime
from decimal import Decimal
import datetime
from typing import Optional
from models.appointment import AppointmentStatus, SessionFormat


class SlotRequest(BaseModel):
    """예약 가능 여부 확인 스키마"""
    psychologist_id: int = Field(..., description="상담사 ID")
    start: AwareDatetime = Field(..., description="시작 시각 (타임존 포함)")
    end: AwareDatetime = Field(..., description="종료 시각 (타임존 포함)")


class AppointmentCreate(SlotRequest):
    """예약 생성 스키마"""
    session_format: SessionFormat
    patient_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\+?[\d\s-]{10,}$")
    reason_for_visit: str = Field(..., min_length=10)
    notes: Optional[str] = None


class SlotResponse(BaseModel):
    psychologist_id: int
    template_id: int
    start: datetime.datetime
    end: datetime.datetime


class CheckAvailabilityResponse(BaseModel):
    message: str
    slot: SlotResponse


class CancelRequest(BaseModel):
    """취소 요청 (사유 필수)"""
    reason: str = Field(..., min_length=1, description="취소 사유")


class CompleteRequest(BaseModel):
    notes: Optional[str] = None


class NotesUpdate(BaseModel):
    notes: str = ""


class AppointmentResponse(BaseModel):
    """예약 응답 스키마 (상태 플래그는 조회 시점에 계산)"""
    id: int
    user_id: int
    psychologist_id: int
    template_id: int
    start_time: datetime.datetime
    end_time: datetime.datetime
    duration: int
    session_format: SessionFormat
    status: AppointmentStatus
    amount: Decimal
    patient_name: str
    email: str
    phone: str
    reason_for_visit: str
    notes: Optional[str] = None
    is_canceled: bool
    cancelation_reason: Optional[str] = None
    canceled_at: Optional[datetime.datetime] = None
    canceled_by: Optional[int] = None
    joined_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    is_past: bool = False
    is_today: bool = False
    can_join: bool = False
    is_ongoing: bool = False

    class Config:
        from_attributes = True


class AppointmentActionResponse(BaseModel):
    message: str
    appointment: AppointmentResponse


class AppointmentListResponse(BaseModel):
    """예약 목록 응답"""
    total: int
    appointments: list[AppointmentResponse]
