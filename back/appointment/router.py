"""
상담 예약 API 라우터
"""

from datetime import datetime
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from database import get_db
from models.appointment import Appointment
from models.user import User, UserRole
from schemas.appointment import (
    AppointmentActionResponse,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    CancelRequest,
    CheckAvailabilityResponse,
    NotesUpdate,
    SlotRequest,
    SlotResponse,
)
from auth.dependencies import get_current_active_user, require_role
from config.dependencies import get_now
from appointment import allocator, service
from appointment.projection import project
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="appointment", level=logging.INFO)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def to_response(appt: Appointment, now: datetime) -> AppointmentResponse:
    """DB 값 + 조회 시점 상태 플래그"""
    response = AppointmentResponse.model_validate(appt)
    return response.model_copy(update=project(appt, now).as_dict())


@router.post("/check-availability", response_model=CheckAvailabilityResponse)
def check_availability(
    data: SlotRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """예약 가능 여부 사전 확인"""
    logger.info(
        f"Checking availability: psychologist_id={data.psychologist_id}, "
        f"start={data.start}, end={data.end}, user_id={current_user.id}"
    )
    check = allocator.check_availability(
        db, current_user.id, data.psychologist_id, data.start, data.end, now
    )
    return CheckAvailabilityResponse(
        message="Time slot is available",
        slot=SlotResponse(
            psychologist_id=data.psychologist_id,
            template_id=check.template.id,
            start=check.start,
            end=check.end,
        ),
    )


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """PENDING 예약 생성 (결제 완료 후 확정)"""
    appt, _ = allocator.book(db, current_user, data, now)
    return to_response(appt, now)


@router.get("", response_model=AppointmentListResponse)
def get_appointments(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """내 예약 목록 (내담자: 본인 예약, 상담사: 담당 예약)"""
    appts = service.list_for_actor(db, current_user, now)
    return AppointmentListResponse(
        total=len(appts),
        appointments=[to_response(a, now) for a in appts],
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """예약 상세 조회"""
    appt = service.get_for_actor(db, appointment_id, current_user, now)
    return to_response(appt, now)


@router.delete("/{appointment_id}", response_model=AppointmentActionResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """내담자 예약 취소 (사유 필수)"""
    logger.info(f"Cancel requested: id={appointment_id}, user_id={current_user.id}")
    appt = service.cancel(db, appointment_id, current_user, data.reason, now)
    return AppointmentActionResponse(
        message="Appointment canceled successfully",
        appointment=to_response(appt, now),
    )


@router.put("/{appointment_id}/join", response_model=AppointmentActionResponse)
def join_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """세션 입장"""
    appt = service.join(db, appointment_id, current_user, now)
    return AppointmentActionResponse(
        message="Session started successfully",
        appointment=to_response(appt, now),
    )


@router.put("/{appointment_id}/notes", response_model=AppointmentActionResponse)
def update_notes(
    appointment_id: int,
    data: NotesUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """상담 노트 수정"""
    appt = service.update_notes(db, appointment_id, current_user, data.notes)
    return AppointmentActionResponse(
        message="Notes updated successfully",
        appointment=to_response(appt, now),
    )
