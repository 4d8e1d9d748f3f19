"""
예약 슬롯 할당

요청 구간이 상담사의 가용 시간 안에 있고 다른 예약과 겹치지 않는지 확인한 뒤
PENDING 예약을 생성한다. 확인과 생성은 하나의 트랜잭션에서 상담사 행을 잠근
상태로 수행하고, 동일 구간 동시 요청은 부분 유니크 인덱스가 최종적으로 막는다.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from models.appointment import Appointment, AppointmentStatus, ACTIVE_STATUSES
from models.availability import AvailabilityTemplate
from models.user import User, UserRole
from schemas.appointment import AppointmentCreate
from availability.service import find_covering_template
from appointment.service import expire_stale_pending
from config.exception import (
    NotFoundError,
    OutsideAvailabilityError,
    SelfOverlapError,
    SlotConflictError,
    TooManyPendingError,
    ValidationError,
)
from config import settings
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="allocator", level=logging.INFO)


@dataclass
class Claimed:
    appointment: Appointment


@dataclass
class AlreadyTaken:
    psychologist_id: int
    start: datetime
    end: datetime


ClaimResult = Union[Claimed, AlreadyTaken]


@dataclass
class SlotCheck:
    psychologist: User
    template: AvailabilityTemplate
    start: datetime
    end: datetime


def _overlaps(start: datetime, end: datetime):
    """반개구간 [start, end) 겹침 조건"""
    return (Appointment.start_time < end) & (Appointment.end_time > start)


def _lock_psychologist(db: Session, psychologist_id: int) -> User:
    psychologist = (
        db.query(User)
        .filter(User.id == psychologist_id, User.role == UserRole.PSYCHOLOGIST)
        .with_for_update()
        .first()
    )
    if not psychologist:
        raise NotFoundError("Psychologist not found")
    return psychologist


def _validate_range(start: datetime, end: datetime, now: datetime) -> None:
    if start < now:
        raise ValidationError("Cannot book appointments in the past")
    if end <= start:
        raise ValidationError("Invalid time range")

    duration = (end - start).total_seconds() / 60
    if duration < settings.MIN_SESSION_MINUTES or duration > settings.MAX_SESSION_MINUTES:
        raise ValidationError(
            f"Duration must be between {settings.MIN_SESSION_MINUTES} and {settings.MAX_SESSION_MINUTES} minutes"
        )


def _run_checks(
    db: Session,
    patient_id: int,
    psychologist_id: int,
    start: datetime,
    end: datetime,
    now: datetime,
) -> SlotCheck:
    _validate_range(start, end, now)
    psychologist = _lock_psychologist(db, psychologist_id)

    template = find_covering_template(db, psychologist_id, start, end)
    if not template:
        logger.info(f"Outside availability: psychologist_id={psychologist_id}, {start} - {end}")
        raise OutsideAvailabilityError()

    conflict = db.query(Appointment).filter(
        Appointment.psychologist_id == psychologist_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        _overlaps(start, end),
    ).first()
    if conflict:
        logger.info(f"Slot conflict: psychologist_id={psychologist_id}, existing_id={conflict.id}")
        raise SlotConflictError()

    pending_count = db.query(Appointment).filter(
        Appointment.user_id == patient_id,
        Appointment.status == AppointmentStatus.PENDING,
    ).count()
    if pending_count >= settings.MAX_PENDING_APPOINTMENTS:
        raise TooManyPendingError(details={"limit": settings.MAX_PENDING_APPOINTMENTS})

    own = db.query(Appointment).filter(
        Appointment.user_id == patient_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        _overlaps(start, end),
    ).first()
    if own:
        raise SelfOverlapError(details={"appointment_id": own.id})

    return SlotCheck(psychologist=psychologist, template=template, start=start, end=end)


def check_availability(
    db: Session,
    patient_id: int,
    psychologist_id: int,
    start: datetime,
    end: datetime,
    now: datetime,
) -> SlotCheck:
    """예약 전 사전 확인 (쓰기 없음)"""
    expire_stale_pending(db, now, psychologist_id=psychologist_id)
    expire_stale_pending(db, now, user_id=patient_id)
    try:
        return _run_checks(db, patient_id, psychologist_id, start, end, now)
    finally:
        db.rollback()  # 잠금 해제


def claim_slot(db: Session, appointment: Appointment) -> ClaimResult:
    """예약 행 삽입. 같은 상담사/구간의 활성 예약이 이미 있으면 AlreadyTaken."""
    db.add(appointment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(
            f"Slot claim lost: psychologist_id={appointment.psychologist_id}, "
            f"{appointment.start_time} - {appointment.end_time}"
        )
        return AlreadyTaken(
            psychologist_id=appointment.psychologist_id,
            start=appointment.start_time,
            end=appointment.end_time,
        )
    db.refresh(appointment)
    return Claimed(appointment=appointment)


def book(
    db: Session,
    patient: User,
    data: AppointmentCreate,
    now: datetime,
) -> tuple[Appointment, AvailabilityTemplate]:
    """검증 후 PENDING 예약 생성. 결제 완료 시 CONFIRMED로 전환된다."""
    start, end = data.start, data.end
    logger.info(
        f"Booking request: patient_id={patient.id}, psychologist_id={data.psychologist_id}, {start} - {end}"
    )

    expire_stale_pending(db, now, psychologist_id=data.psychologist_id)
    expire_stale_pending(db, now, user_id=patient.id)

    try:
        check = _run_checks(db, patient.id, data.psychologist_id, start, end, now)
    except Exception:
        db.rollback()
        raise

    fee = check.psychologist.session_fee
    if fee is None:
        db.rollback()
        raise ValidationError("Psychologist has no session fee configured")

    appointment = Appointment(
        user_id=patient.id,
        psychologist_id=data.psychologist_id,
        template_id=check.template.id,
        start_time=start,
        end_time=end,
        duration=int((end - start).total_seconds() // 60),
        session_format=data.session_format,
        status=AppointmentStatus.PENDING,
        amount=fee,
        patient_name=data.patient_name.strip(),
        email=str(data.email).strip().lower(),
        phone=data.phone.strip(),
        reason_for_visit=data.reason_for_visit.strip(),
        notes=(data.notes or "").strip(),
        is_canceled=False,
        created_at=now,
    )

    result = claim_slot(db, appointment)
    if isinstance(result, AlreadyTaken):
        raise SlotConflictError()

    logger.info(f"Appointment created: id={result.appointment.id}, status=pending, template_id={check.template.id}")
    return result.appointment, check.template
