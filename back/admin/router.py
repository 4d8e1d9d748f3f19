"""
관리자 API 라우터 - 예약 상태 강제 변경, 결제 환불
"""

from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from database import get_db
from models.user import User
from schemas.appointment import (
    AppointmentActionResponse,
    AppointmentListResponse,
    CancelRequest,
    CompleteRequest,
)
from schemas.payment import PaymentActionResponse, PaymentListResponse, PaymentResponse, RefundRequest
from auth.dependencies import get_current_active_user
from config.dependencies import get_now, get_payment_gateway
from config.exception import ForbiddenError
from appointment import policies
from appointment import service as appointment_service
from appointment.router import to_response
from payment import service as payment_service
from payment.gateway import PaymentGateway
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="admin", level=logging.INFO)

router = APIRouter(prefix="/admin", tags=["Admin"])


def admin_only(current_user: User = Depends(get_current_active_user)) -> User:
    if not policies.can_administer(current_user):
        logger.warning(f"Admin route denied: user_id={current_user.id}, role={current_user.role.value}")
        raise ForbiddenError("Access denied. admin privileges required.")
    return current_user


@router.get("/appointments", response_model=AppointmentListResponse)
def get_all_appointments(
    current_user: User = Depends(admin_only),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """전체 예약 목록"""
    appts = appointment_service.list_for_actor(db, current_user, now)
    return AppointmentListResponse(
        total=len(appts),
        appointments=[to_response(a, now) for a in appts],
    )


@router.patch("/appointments/{appointment_id}/cancel", response_model=AppointmentActionResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelRequest,
    current_user: User = Depends(admin_only),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """관리자 예약 취소"""
    logger.info(f"Admin cancel: id={appointment_id}, admin_id={current_user.id}")
    appt = appointment_service.cancel(db, appointment_id, current_user, data.reason, now)
    return AppointmentActionResponse(
        message="Appointment canceled successfully",
        appointment=to_response(appt, now),
    )


@router.patch("/appointments/{appointment_id}/complete", response_model=AppointmentActionResponse)
def complete_appointment(
    appointment_id: int,
    data: CompleteRequest | None = None,
    current_user: User = Depends(admin_only),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """완료 처리 (이미 완료된 경우에도 200)"""
    notes = data.notes if data else None
    appt, message = appointment_service.complete(db, appointment_id, notes, now)
    return AppointmentActionResponse(message=message, appointment=to_response(appt, now))


@router.patch("/appointments/{appointment_id}/no-show", response_model=AppointmentActionResponse)
def mark_no_show(
    appointment_id: int,
    current_user: User = Depends(admin_only),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """노쇼 처리 (이미 노쇼인 경우에도 200)"""
    appt, message = appointment_service.mark_no_show(db, appointment_id, now)
    return AppointmentActionResponse(message=message, appointment=to_response(appt, now))


@router.get("/payments", response_model=PaymentListResponse)
def get_payments(
    current_user: User = Depends(admin_only),
    db: Session = Depends(get_db),
):
    """전체 결제 목록"""
    payments = payment_service.list_payments(db)
    return PaymentListResponse(
        total=len(payments),
        payments=[PaymentResponse.model_validate(p) for p in payments],
    )


@router.post("/payments/{payment_id}/refund", response_model=PaymentActionResponse)
def refund_payment(
    payment_id: int,
    data: RefundRequest | None = None,
    current_user: User = Depends(admin_only),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    now: datetime = Depends(get_now),
):
    """환불 처리 및 연결된 예약 취소"""
    reason = data.reason if data else "Refunded by admin"
    logger.info(f"Admin refund: payment_id={payment_id}, admin_id={current_user.id}")
    payment = payment_service.refund(db, gateway, payment_id, current_user, reason, now)
    message = "Payment refunded successfully"
    if payment.needs_reconciliation:
        message = "Payment refunded; appointment requires manual reconciliation"
    return PaymentActionResponse(message=message, payment=PaymentResponse.model_validate(payment))
