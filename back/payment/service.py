"""
결제 정산 (Payment Reconciliation)

결제 기록은 예약이 확정되기 전에 먼저 생성된다. 결제가 완료되면 예약을
CONFIRMED로 전환하고, 그 사이 예약이 사라졌거나 취소되었으면 자동 환불한다.
환불 시에는 연결된 예약을 취소해 슬롯을 반환한다.

클라이언트가 보고한 상태는 그대로 믿지 않는다. 상태를 바꾸기 전에 결제
제공자에서 결제 의도를 다시 조회해 보고 내용과 일치하는지 확인한다.
"""

from datetime import datetime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from models.appointment import Appointment, AppointmentStatus
from models.payment import Payment, PaymentStatus
from models.user import User
from appointment import policies
from appointment.service import (
    apply_cancel,
    apply_confirm,
    commit_or_conflict,
    get_appointment,
    reconcile_time_status,
)
from payment.gateway import PaymentGateway, to_minor_units
from config.exception import (
    AppException,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PaymentMismatchError,
    PaymentNotVerifiedError,
    SlotNoLongerAvailableError,
)
from config import settings
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="payment", level=logging.INFO)

PAYMENT_FAILED_REASON = "Payment failed"

# Stripe 가 결제 실패/중단 후 남기는 상태
FAILED_INTENT_STATUSES = ("requires_payment_method", "canceled")


def _get_by_intent(db: Session, payment_intent_id: str) -> Payment:
    payment = db.query(Payment).filter(Payment.stripe_payment_intent_id == payment_intent_id).first()
    if not payment:
        logger.error(f"Payment not found for paymentIntentId: {payment_intent_id}")
        raise NotFoundError("Payment record not found")
    return payment


def get_payment(db: Session, payment_id: int) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def list_payments(db: Session) -> list[Payment]:
    return db.query(Payment).order_by(Payment.created_at.desc()).all()


def create_intent(
    db: Session,
    gateway: PaymentGateway,
    patient: User,
    appointment_id: int,
    now: datetime,
) -> tuple[Payment, str | None]:
    """결제 의도 생성 + pending 결제 기록 저장"""
    appointment = get_appointment(db, appointment_id)
    if appointment.user_id != patient.id:
        raise ForbiddenError("You are not authorized to pay for this appointment")

    # 결제 만료 시간이 지난 PENDING 은 여기서 취소된다
    if reconcile_time_status(appointment, now):
        commit_or_conflict(db)
    if appointment.status != AppointmentStatus.PENDING:
        raise InvalidStateError(f"Cannot pay for an appointment with status: {appointment.status.value}")

    live = db.query(Payment).filter(
        Payment.appointment_id == appointment.id,
        Payment.status.in_((PaymentStatus.PENDING, PaymentStatus.COMPLETED)),
    ).first()
    if live:
        raise ConflictError(
            "A payment is already in progress for this appointment",
            details={"payment_id": live.id},
        )

    intent = gateway.create_intent(
        appointment.amount,
        metadata={
            "userId": str(patient.id),
            "psychologistId": str(appointment.psychologist_id),
            "appointmentId": str(appointment.id),
            "appointmentDate": appointment.start_time.isoformat(),
        },
    )

    payment = Payment(
        user_id=patient.id,
        psychologist_id=appointment.psychologist_id,
        appointment_id=appointment.id,
        amount=appointment.amount,
        currency=settings.STRIPE_CURRENCY,
        status=PaymentStatus.PENDING,
        stripe_payment_intent_id=intent.intent_id,
        created_at=now,
    )
    db.add(payment)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # 동시에 두 결제가 생성된 경우: 방금 만든 의도는 결제되지 않은 채 남는다
        logger.error(f"Duplicate live payment for appointment_id={appointment_id}, intent={intent.intent_id}")
        raise ConflictError("A payment is already in progress for this appointment") from e
    db.refresh(payment)

    logger.info(f"Pending payment created: id={payment.id}, appointment_id={appointment.id}, intent={intent.intent_id}")
    return payment, intent.client_secret


def _not_verified(payment: Payment, reported: PaymentStatus, provider_status: str) -> PaymentNotVerifiedError:
    logger.warning(
        f"Unverified payment status report: payment_id={payment.id}, "
        f"reported={reported.value}, provider={provider_status}"
    )
    return PaymentNotVerifiedError(
        details={"payment_id": payment.id, "reported": reported.value, "provider_status": provider_status}
    )


def _compensate(db: Session, gateway: PaymentGateway, payment: Payment, reason: str) -> None:
    """결제 완료 후 예약을 확정할 수 없을 때 자동 환불"""
    gateway.refund(payment.stripe_payment_intent_id, reason)
    payment.status = PaymentStatus.REFUNDED
    payment.refund_reason = reason
    db.commit()
    logger.warning(f"Payment auto-refunded: id={payment.id}, reason={reason}")


def _complete(db: Session, gateway: PaymentGateway, payment: Payment, now: datetime) -> Payment:
    if payment.status == PaymentStatus.COMPLETED:
        return payment
    if payment.status != PaymentStatus.PENDING:
        raise InvalidStateError(f"Cannot complete a payment with status: {payment.status.value}")

    state = gateway.retrieve_intent(payment.stripe_payment_intent_id)
    if state.status != "succeeded":
        raise _not_verified(payment, PaymentStatus.COMPLETED, state.status)
    if state.amount != to_minor_units(payment.amount):
        logger.error(
            f"Provider amount mismatch: payment_id={payment.id}, provider={state.amount}, recorded={payment.amount}"
        )
        raise PaymentMismatchError(details={"payment_id": payment.id})

    appointment = None
    if payment.appointment_id is not None:
        appointment = db.query(Appointment).filter(Appointment.id == payment.appointment_id).first()

    if appointment is None:
        _compensate(db, gateway, payment, "Appointment no longer exists")
        raise SlotNoLongerAvailableError(details={"payment_id": payment.id})

    if appointment.amount != payment.amount:
        logger.error(
            f"Payment amount mismatch: payment_id={payment.id}, paid={payment.amount}, due={appointment.amount}"
        )
        raise PaymentMismatchError(details={"payment_id": payment.id, "appointment_id": appointment.id})

    # 결제 만료 후 도착한 완료 통지는 자동 환불 경로로 간다
    reconcile_time_status(appointment, now)
    try:
        apply_confirm(appointment, now)
    except SlotNoLongerAvailableError:
        _compensate(db, gateway, payment, "Time slot is no longer available")
        raise

    payment.status = PaymentStatus.COMPLETED
    commit_or_conflict(db)
    db.refresh(payment)

    logger.info(f"Payment completed: id={payment.id}, appointment_id={appointment.id} confirmed")
    return payment


def _fail(db: Session, gateway: PaymentGateway, payment: Payment, now: datetime) -> Payment:
    if payment.status != PaymentStatus.PENDING:
        raise InvalidStateError(f"Cannot fail a payment with status: {payment.status.value}")

    state = gateway.retrieve_intent(payment.stripe_payment_intent_id)
    if state.status not in FAILED_INTENT_STATUSES:
        raise _not_verified(payment, PaymentStatus.FAILED, state.status)

    payment.status = PaymentStatus.FAILED
    if payment.appointment is not None and payment.appointment.status == AppointmentStatus.PENDING:
        apply_cancel(payment.appointment, None, PAYMENT_FAILED_REASON, now)
    commit_or_conflict(db)
    db.refresh(payment)

    logger.info(f"Payment failed: id={payment.id}, pending appointment released")
    return payment


def _mark_refunded(db: Session, payment: Payment, actor_id: int | None, reason: str, now: datetime) -> Payment:
    """환불 상태 반영 + 예약 취소. 취소 실패 시 수동 정산 표시 후 결제 상태는 유지."""
    payment.status = PaymentStatus.REFUNDED
    payment.refund_reason = reason

    appointment = payment.appointment
    if appointment is not None and appointment.status != AppointmentStatus.CANCELED:
        try:
            apply_cancel(appointment, actor_id, f"Payment refunded: {reason}", now, force=True)
        except AppException as e:
            payment.needs_reconciliation = True
            logger.error(
                f"Refund cascade failed, manual reconciliation required: payment_id={payment.id}, "
                f"appointment_id={appointment.id}, error={e.code}: {e.message}"
            )

    commit_or_conflict(db)
    db.refresh(payment)
    return payment


def update_status(
    db: Session,
    gateway: PaymentGateway,
    actor: User,
    payment_intent_id: str,
    status: PaymentStatus,
    now: datetime,
) -> Payment:
    """결제 상태 통지 반영. 결제 당사자 또는 관리자만, 제공자 조회로 확인된 경우에만."""
    payment = _get_by_intent(db, payment_intent_id)
    if not policies.can_report_payment(actor, payment):
        raise ForbiddenError("You are not authorized to update this payment")

    logger.info(f"Payment status update: id={payment.id}, {payment.status.value} -> {status.value}, by={actor.id}")

    if status == PaymentStatus.COMPLETED:
        return _complete(db, gateway, payment, now)
    if status == PaymentStatus.FAILED:
        return _fail(db, gateway, payment, now)
    if status == PaymentStatus.REFUNDED:
        if payment.status == PaymentStatus.REFUNDED:
            return payment
        state = gateway.retrieve_intent(payment.stripe_payment_intent_id)
        if not state.refunded:
            raise _not_verified(payment, PaymentStatus.REFUNDED, state.status)
        return _mark_refunded(db, payment, None, "Refunded by payment provider", now)

    if payment.status != PaymentStatus.PENDING:
        raise InvalidStateError(f"Cannot move a {payment.status.value} payment back to pending")
    return payment


def refund(
    db: Session,
    gateway: PaymentGateway,
    payment_id: int,
    actor: User,
    reason: str,
    now: datetime,
) -> Payment:
    """관리자 환불: 제공자 환불 -> 결제 상태 -> 예약 취소 순서로 처리"""
    if not policies.can_administer(actor):
        raise ForbiddenError("Only administrators can refund payments")

    payment = get_payment(db, payment_id)
    if payment.status != PaymentStatus.COMPLETED:
        raise InvalidStateError(f"Cannot refund a payment with status: {payment.status.value}")

    logger.info(f"Processing refund for payment: {payment.id}")
    gateway.refund(payment.stripe_payment_intent_id, reason)

    try:
        payment = _mark_refunded(db, payment, actor.id, reason, now)
    except ConflictError:
        logger.error(
            f"Refund issued but local update failed, manual reconciliation required: payment_id={payment_id}"
        )
        raise
    logger.info(f"Payment refunded: id={payment.id}, needs_reconciliation={payment.needs_reconciliation}")
    return payment
