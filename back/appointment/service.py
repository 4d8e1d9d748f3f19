"""
예약 상태 관리 (Appointment Lifecycle)

    PENDING   --(결제 완료)-->            CONFIRMED
    PENDING   --(취소/결제 만료)-->        CANCELED
    CONFIRMED --(참여자 입장)-->           ONGOING
    CONFIRMED --(시작 전 취소)-->          CANCELED
    CONFIRMED --(입장 없이 종료)-->        MISSED
    ONGOING   --(완료 처리/종료 시각 경과)--> COMPLETED
    COMPLETED, CANCELED, MISSED 는 종료 상태

상태 변경은 이 모듈의 함수로만 한다. 취소되면 예약이 활성 상태 집합에서
빠지므로 해당 슬롯은 바로 다시 예약 가능해진다.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from models.appointment import Appointment, AppointmentStatus, TERMINAL_STATUSES
from models.user import User, UserRole
from appointment import policies
from appointment.projection import join_window
from config.exception import (
    AlreadyCompletedError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PastAppointmentError,
    SlotNoLongerAvailableError,
)
from config import settings
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="appointment", level=logging.INFO)

EXPIRED_REASON = "Payment not completed in time"


def commit_or_conflict(db: Session) -> None:
    """버전 충돌(동시 상태 변경)을 ConflictError로 변환해 커밋"""
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent appointment update rejected: {str(e)}")
        raise ConflictError("Appointment was modified by another request; please retry") from e


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFoundError("Appointment not found")
    return appointment


##### 상태 전이 (커밋하지 않음) #####

def apply_cancel(
    appointment: Appointment,
    actor_id: Optional[int],
    reason: str,
    now: datetime,
    force: bool = False,
) -> None:
    """취소 규칙 검사 후 상태 변경. force는 환불 경로 전용 (시작 여부 무시)."""
    status = appointment.status
    if status == AppointmentStatus.COMPLETED:
        raise AlreadyCompletedError("Cannot cancel a completed appointment")
    if status in (AppointmentStatus.CANCELED, AppointmentStatus.MISSED):
        raise InvalidStateError(f"Cannot cancel an appointment with status: {status.value}")
    if not force:
        if status == AppointmentStatus.ONGOING:
            raise InvalidStateError("Cannot cancel a session that is in progress")
        if status == AppointmentStatus.CONFIRMED and appointment.start_time < now:
            raise PastAppointmentError()

    appointment.status = AppointmentStatus.CANCELED
    appointment.is_canceled = True
    appointment.canceled_at = now
    appointment.canceled_by = actor_id
    appointment.cancelation_reason = reason

    logger.info(
        f"Appointment canceled: id={appointment.id}, from={status.value}, by={actor_id}, reason={reason!r}"
    )


def apply_confirm(appointment: Appointment, now: datetime) -> None:
    """결제 완료 반영. 이미 CONFIRMED면 그대로 둔다."""
    if appointment.status == AppointmentStatus.CONFIRMED:
        return
    if appointment.status != AppointmentStatus.PENDING:
        raise SlotNoLongerAvailableError(
            details={"appointment_id": appointment.id, "status": appointment.status.value}
        )
    appointment.status = AppointmentStatus.CONFIRMED
    logger.info(f"Appointment confirmed: id={appointment.id}")


def reconcile_time_status(appointment: Appointment, now: datetime) -> bool:
    """시간 경과에 따른 상태 정리. 변경되었으면 True.

    - PENDING 이 결제 만료 시간을 넘김 -> CANCELED
    - CONFIRMED 가 입장 가능 구간 종료까지 입장 기록 없음 -> MISSED
    - ONGOING 이 종료 시각을 넘김 -> COMPLETED
    """
    status = appointment.status
    if status == AppointmentStatus.PENDING:
        expiry = timedelta(minutes=settings.PENDING_EXPIRY_MINUTES)
        if appointment.created_at + expiry < now:
            apply_cancel(appointment, None, EXPIRED_REASON, now)
            return True
    elif status == AppointmentStatus.CONFIRMED:
        _, window_end = join_window(appointment.start_time, appointment.end_time)
        if now > window_end and appointment.joined_at is None:
            appointment.status = AppointmentStatus.MISSED
            logger.info(f"Appointment missed: id={appointment.id}")
            return True
    elif status == AppointmentStatus.ONGOING:
        if now > appointment.end_time:
            appointment.status = AppointmentStatus.COMPLETED
            appointment.completed_at = now
            logger.info(f"Appointment auto-completed: id={appointment.id}")
            return True
    return False


def refresh_statuses(db: Session, appointments: Iterable[Appointment], now: datetime) -> None:
    """조회 직전에 시간 기반 상태를 반영"""
    changed = [a for a in appointments if reconcile_time_status(a, now)]
    if changed:
        commit_or_conflict(db)


def expire_stale_pending(
    db: Session,
    now: datetime,
    psychologist_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> int:
    """결제되지 않은 채 만료 시간이 지난 PENDING 예약을 취소하고 슬롯 반환"""
    cutoff = now - timedelta(minutes=settings.PENDING_EXPIRY_MINUTES)
    query = db.query(Appointment).filter(
        Appointment.status == AppointmentStatus.PENDING,
        Appointment.created_at < cutoff,
    )
    if psychologist_id is not None:
        query = query.filter(Appointment.psychologist_id == psychologist_id)
    if user_id is not None:
        query = query.filter(Appointment.user_id == user_id)

    stale = query.all()
    for appointment in stale:
        apply_cancel(appointment, None, EXPIRED_REASON, now)
    if stale:
        commit_or_conflict(db)
        logger.info(f"Expired {len(stale)} stale pending appointment(s)")
    return len(stale)


##### 외부 노출 작업 #####

def cancel(
    db: Session,
    appointment_id: int,
    actor: User,
    reason: str,
    now: datetime,
) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if not policies.can_cancel(actor, appointment):
        raise ForbiddenError("You are not authorized to cancel this appointment")

    apply_cancel(appointment, actor.id, reason, now)
    commit_or_conflict(db)
    db.refresh(appointment)
    return appointment


def complete(
    db: Session,
    appointment_id: int,
    notes: Optional[str],
    now: datetime,
) -> tuple[Appointment, str]:
    """완료 처리. 이미 완료된 경우 오류 없이 안내 메시지만 반환."""
    appointment = get_appointment(db, appointment_id)

    if appointment.status == AppointmentStatus.COMPLETED:
        return appointment, "Appointment is already marked as completed"
    if appointment.status == AppointmentStatus.CANCELED:
        raise InvalidStateError("Cannot complete a canceled appointment")
    if appointment.status == AppointmentStatus.MISSED:
        raise InvalidStateError("Cannot complete a missed appointment")
    if appointment.status == AppointmentStatus.PENDING:
        raise InvalidStateError("Cannot complete an appointment that has not been paid")

    appointment.status = AppointmentStatus.COMPLETED
    appointment.completed_at = now
    if notes is not None:
        appointment.notes = notes
    commit_or_conflict(db)
    db.refresh(appointment)

    logger.info(f"Appointment completed: id={appointment.id}")
    return appointment, "Appointment marked as completed successfully"


def mark_no_show(db: Session, appointment_id: int, now: datetime) -> tuple[Appointment, str]:
    appointment = get_appointment(db, appointment_id)

    if appointment.status == AppointmentStatus.MISSED:
        return appointment, "Appointment is already marked as no-show"
    if appointment.status == AppointmentStatus.CANCELED:
        raise InvalidStateError("Cannot mark a canceled appointment as no-show")
    if appointment.status == AppointmentStatus.COMPLETED:
        raise InvalidStateError("Cannot mark a completed appointment as no-show")

    appointment.status = AppointmentStatus.MISSED
    commit_or_conflict(db)
    db.refresh(appointment)

    logger.info(f"Appointment marked as no-show: id={appointment.id}")
    return appointment, "Appointment marked as no-show successfully"


def join(db: Session, appointment_id: int, actor: User, now: datetime) -> Appointment:
    """세션 입장. 첫 입장 시 ONGOING 전환 및 joined_at 기록."""
    appointment = get_appointment(db, appointment_id)
    if not policies.can_join(actor, appointment):
        raise ForbiddenError("You are not authorized to access this appointment")

    status = appointment.status
    if status == AppointmentStatus.ONGOING:
        return appointment
    if status == AppointmentStatus.CANCELED:
        raise InvalidStateError("Cannot join a canceled appointment")
    if status == AppointmentStatus.COMPLETED:
        raise InvalidStateError("This appointment has already been completed")
    if status in TERMINAL_STATUSES:
        raise InvalidStateError(f"Cannot join an appointment with status: {status.value}")
    if status == AppointmentStatus.PENDING:
        raise InvalidStateError("Cannot join an appointment that has not been paid")

    window_start, window_end = join_window(appointment.start_time, appointment.end_time)
    if not (window_start <= now <= window_end):
        raise InvalidStateError(
            "Appointment is outside of its join window",
            details={"join_window_start": window_start.isoformat(), "join_window_end": window_end.isoformat()},
        )

    appointment.status = AppointmentStatus.ONGOING
    appointment.joined_at = now
    commit_or_conflict(db)
    db.refresh(appointment)

    logger.info(f"Session started: id={appointment.id}, by={actor.id}")
    return appointment


def update_notes(db: Session, appointment_id: int, actor: User, notes: str) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if not policies.can_edit_notes(actor, appointment):
        raise ForbiddenError("Only the psychologist of this appointment can edit notes")

    appointment.notes = notes
    commit_or_conflict(db)
    db.refresh(appointment)
    return appointment


def get_for_actor(db: Session, appointment_id: int, actor: User, now: datetime) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if not policies.can_view(actor, appointment):
        raise ForbiddenError("You are not authorized to access this appointment")
    refresh_statuses(db, [appointment], now)
    return appointment


def list_for_actor(db: Session, actor: User, now: datetime) -> list[Appointment]:
    query = db.query(Appointment)
    if actor.role == UserRole.PSYCHOLOGIST:
        query = query.filter(Appointment.psychologist_id == actor.id)
    elif actor.role == UserRole.PATIENT:
        query = query.filter(Appointment.user_id == actor.id)

    appointments = query.order_by(Appointment.start_time).all()
    refresh_statuses(db, appointments, now)
    return appointments
