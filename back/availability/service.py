"""
상담사 주간 가용 시간(AvailabilityTemplate) 관리

템플릿은 요일 + 시각 범위만 가진다. 날짜별 예약 가능 구간은 템플릿에서
활성 예약을 빼서 조회 시점에 계산한다.
"""

import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Optional
from sqlalchemy.orm import Session
from models.availability import AvailabilityTemplate
from models.appointment import Appointment, ACTIVE_STATUSES
from models.user import User, UserRole
from appointment.service import expire_stale_pending
from config.exception import ValidationError, NotFoundError, ConflictError
from config import settings
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="availability", level=logging.INFO)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_hhmm(value: str, field: str) -> time:
    """'HH:MM' (24시간제) 문자열을 time으로 변환"""
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValidationError(
            f"invalid {field} format (expected HH:MM)",
            details={"field": field, "value": value},
        )
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def day_of_week(moment: datetime) -> int:
    """0=일요일 ... 6=토요일"""
    return (moment.weekday() + 1) % 7


def _validate_days(days_of_week: Iterable[int]) -> list[int]:
    days = sorted(set(days_of_week))
    if not days:
        raise ValidationError("daysOfWeek must not be empty", details={"field": "days_of_week"})
    if any(d < 0 or d > 6 for d in days):
        raise ValidationError("daysOfWeek values must be between 0 and 6", details={"field": "days_of_week"})
    return days


def _validate_window(days_of_week, start_time: str, end_time: str) -> tuple[list[int], time, time]:
    days = _validate_days(days_of_week)
    start = parse_hhmm(start_time, "start_time")
    end = parse_hhmm(end_time, "end_time")
    if end <= start:
        raise ValidationError("end_time must be after start_time")
    return days, start, end


def _find_overlap(
    db: Session,
    psychologist_id: int,
    days: list[int],
    start: time,
    end: time,
    exclude_id: Optional[int] = None,
) -> Optional[AvailabilityTemplate]:
    for template in list_active_templates(db, psychologist_id):
        if template.id == exclude_id:
            continue
        if not template.shares_day_with(days):
            continue
        if start < template.end_time and end > template.start_time:
            return template
    return None


def _require_psychologist(db: Session, psychologist_id: int) -> User:
    psychologist = db.query(User).filter(
        User.id == psychologist_id,
        User.role == UserRole.PSYCHOLOGIST,
    ).first()
    if not psychologist:
        raise NotFoundError("Psychologist not found")
    return psychologist


def list_active_templates(db: Session, psychologist_id: int) -> list[AvailabilityTemplate]:
    return (
        db.query(AvailabilityTemplate)
        .filter(
            AvailabilityTemplate.psychologist_id == psychologist_id,
            AvailabilityTemplate.is_active.is_(True),
        )
        .order_by(AvailabilityTemplate.start_time)
        .all()
    )


def create_template(
    db: Session,
    psychologist_id: int,
    days_of_week: Iterable[int],
    start_time: str,
    end_time: str,
) -> AvailabilityTemplate:
    """새 주간 가용 시간 등록. 같은 요일에 겹치는 활성 템플릿이 있으면 거절."""
    days, start, end = _validate_window(days_of_week, start_time, end_time)

    # 같은 상담사의 템플릿 생성을 직렬화
    db.query(User).filter(User.id == psychologist_id).with_for_update().first()

    existing = _find_overlap(db, psychologist_id, days, start, end)
    if existing:
        logger.warning(
            f"Template overlap: psychologist_id={psychologist_id}, new={days} {start}-{end}, existing_id={existing.id}"
        )
        raise ConflictError(
            "Time slot overlaps with existing availability",
            details={"existing_template_id": existing.id},
        )

    template = AvailabilityTemplate(
        psychologist_id=psychologist_id,
        days_of_week=days,
        start_time=start,
        end_time=end,
        is_active=True,
    )
    db.add(template)
    db.commit()
    db.refresh(template)

    logger.info(f"Template created: id={template.id}, psychologist_id={psychologist_id}, days={days}, {start}-{end}")
    return template


def update_template(
    db: Session,
    template_id: int,
    psychologist_id: int,
    days_of_week: Iterable[int],
    start_time: str,
    end_time: str,
) -> AvailabilityTemplate:
    """템플릿 수정. 겹침 검사에서 자기 자신은 제외."""
    days, start, end = _validate_window(days_of_week, start_time, end_time)

    template = db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.id == template_id,
        AvailabilityTemplate.psychologist_id == psychologist_id,
        AvailabilityTemplate.is_active.is_(True),
    ).first()
    if not template:
        raise NotFoundError("Availability slot not found")

    existing = _find_overlap(db, psychologist_id, days, start, end, exclude_id=template_id)
    if existing:
        raise ConflictError(
            "Time slot overlaps with existing availability",
            details={"existing_template_id": existing.id},
        )

    template.days_of_week = days
    template.start_time = start
    template.end_time = end
    db.commit()
    db.refresh(template)

    logger.info(f"Template updated: id={template.id}, days={days}, {start}-{end}")
    return template


def deactivate_template(db: Session, template_id: int, psychologist_id: int) -> AvailabilityTemplate:
    """소프트 삭제 (is_active=False). 이미 비활성이면 그대로 반환."""
    template = db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.id == template_id,
        AvailabilityTemplate.psychologist_id == psychologist_id,
    ).first()
    if not template:
        raise NotFoundError("Availability slot not found")

    if template.is_active:
        template.is_active = False
        db.commit()
        db.refresh(template)
        logger.info(f"Template deactivated: id={template_id}, psychologist_id={psychologist_id}")

    return template


def find_covering_template(
    db: Session,
    psychologist_id: int,
    start: datetime,
    end: datetime,
    tz: Optional[tzinfo] = None,
) -> Optional[AvailabilityTemplate]:
    """요청 구간 전체를 포함하는 활성 템플릿 조회 (기준 타임존의 요일/시각)"""
    tz = tz or settings.SCHEDULING_TIMEZONE
    local_start = start.astimezone(tz)
    local_end = end.astimezone(tz)

    # 자정을 넘는 구간은 어떤 템플릿에도 포함될 수 없음
    if local_start.date() != local_end.date():
        return None

    weekday = day_of_week(local_start)
    request_start = local_start.time().replace(tzinfo=None)
    request_end = local_end.time().replace(tzinfo=None)

    for template in list_active_templates(db, psychologist_id):
        if weekday not in template.days_of_week:
            continue
        if template.start_time <= request_start and template.end_time >= request_end:
            return template
    return None


def _subtract(window: tuple[datetime, datetime], busy: list[tuple[datetime, datetime]]):
    """구간에서 점유 구간들을 빼고 남은 구간 목록 반환"""
    free = [window]
    for busy_start, busy_end in busy:
        remaining = []
        for free_start, free_end in free:
            if busy_start >= free_end or busy_end <= free_start:
                remaining.append((free_start, free_end))
                continue
            if busy_start > free_start:
                remaining.append((free_start, busy_start))
            if busy_end < free_end:
                remaining.append((busy_end, free_end))
        free = remaining
    return free


def open_windows(
    db: Session,
    psychologist_id: int,
    from_date: date,
    days: int,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> list[dict]:
    """기간 내 날짜별 예약 가능 구간 계산 (템플릿 - 활성 예약 - 지난 시간)"""
    tz = tz or settings.SCHEDULING_TIMEZONE
    if days < 1 or days > 31:
        raise ValidationError("days must be between 1 and 31")

    _require_psychologist(db, psychologist_id)
    expire_stale_pending(db, now, psychologist_id=psychologist_id)
    templates = list_active_templates(db, psychologist_id)
    if not templates:
        return []

    range_start = datetime.combine(from_date, time.min, tzinfo=tz)
    range_end = range_start + timedelta(days=days)

    booked = (
        db.query(Appointment)
        .filter(
            Appointment.psychologist_id == psychologist_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_time < range_end,
            Appointment.end_time > range_start,
        )
        .all()
    )
    busy = [(a.start_time, a.end_time) for a in booked]

    windows = []
    for offset in range(days):
        current = from_date + timedelta(days=offset)
        weekday = day_of_week(datetime.combine(current, time.min))
        for template in templates:
            if weekday not in template.days_of_week:
                continue
            window_start = datetime.combine(current, template.start_time, tzinfo=tz)
            window_end = datetime.combine(current, template.end_time, tzinfo=tz)
            if window_end <= now:
                continue
            window_start = max(window_start, now)
            for free_start, free_end in _subtract((window_start, window_end), busy):
                windows.append({
                    "template_id": template.id,
                    "start": free_start,
                    "end": free_end,
                })

    windows.sort(key=lambda w: w["start"])
    return windows
