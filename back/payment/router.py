"""
결제 API 라우터
"""

from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from database import get_db
from models.user import User, UserRole
from schemas.payment import (
    CreateIntentRequest,
    CreateIntentResponse,
    PaymentActionResponse,
    PaymentResponse,
    UpdateStatusRequest,
)
from auth.dependencies import get_current_active_user, require_role
from config.dependencies import get_now, get_payment_gateway
from payment.gateway import PaymentGateway
from payment import service
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="payment", level=logging.INFO)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/create-intent", response_model=CreateIntentResponse)
def create_intent(
    data: CreateIntentRequest,
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    now: datetime = Depends(get_now),
):
    """결제 의도 생성 및 pending 결제 기록"""
    logger.info(f"Creating payment intent: appointment_id={data.appointment_id}, user_id={current_user.id}")
    payment, client_secret = service.create_intent(db, gateway, current_user, data.appointment_id, now)
    return CreateIntentResponse(
        client_secret=client_secret,
        payment_intent_id=payment.stripe_payment_intent_id,
        payment_id=payment.id,
    )


@router.post("/update-status", response_model=PaymentActionResponse)
def update_status(
    data: UpdateStatusRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    now: datetime = Depends(get_now),
):
    """결제 상태 반영 (제공자 조회로 확인 후, 완료 시 예약 확정)"""
    payment = service.update_status(db, gateway, current_user, data.payment_intent_id, data.status, now)
    return PaymentActionResponse(
        message="Payment status updated successfully",
        payment=PaymentResponse.model_validate(payment),
    )
