"""
조회 시점 기준 예약 상태 플래그 계산

결과는 응답에만 실리고 DB에는 저장하지 않는다. 현재 시각이 요청마다 다르기 때문.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, tzinfo
from typing import Optional
from models.appointment import AppointmentStatus
from config import settings


@dataclass(frozen=True)
class StatusProjection:
    is_today: bool
    is_past: bool
    can_join: bool
    is_ongoing: bool

    def as_dict(self) -> dict:
        return asdict(self)


def join_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """입장 가능 구간 [시작-5분, 종료+15분]"""
    return (
        start - timedelta(minutes=settings.JOIN_WINDOW_BEFORE_MINUTES),
        end + timedelta(minutes=settings.JOIN_WINDOW_AFTER_MINUTES),
    )


def project(appointment, now: datetime, tz: Optional[tzinfo] = None) -> StatusProjection:
    tz = tz or settings.SCHEDULING_TIMEZONE
    start, end = appointment.start_time, appointment.end_time
    window_start, window_end = join_window(start, end)

    is_today = start.astimezone(tz).date() == now.astimezone(tz).date()
    is_ongoing = start <= now <= end
    is_past = False if is_ongoing else now > window_end
    can_join = (
        appointment.status == AppointmentStatus.CONFIRMED
        and window_start <= now <= window_end
    )

    return StatusProjection(
        is_today=is_today,
        is_past=is_past,
        can_join=can_join,
        is_ongoing=is_ongoing,
    )
