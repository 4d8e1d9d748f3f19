"""
상담 예약(Appointment) 모델
"""

import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, Numeric, ForeignKey, Enum, Index, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base, UTCDateTime


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELED = "canceled"
    MISSED = "missed"


class SessionFormat(str, enum.Enum):
    VIDEO = "video"
    IN_PERSON = "in-person"
    PHONE = "phone"


# 슬롯을 점유하고 있는 상태
ACTIVE_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.ONGOING,
)
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELED,
    AppointmentStatus.MISSED,
)

_ACTIVE_VALUES = ", ".join(f"'{s.value}'" for s in ACTIVE_STATUSES)


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Appointment(Base):
    """상담 예약 모델"""
    __tablename__ = "appointments"
    __table_args__ = (
        # 동일 상담사/동일 시간대의 활성 예약은 하나만 존재 (동시 예약 경합 차단)
        Index(
            "uq_appointments_active_slot",
            "psychologist_id",
            "start_time",
            "end_time",
            unique=True,
            postgresql_where=text(f"status IN ({_ACTIVE_VALUES})"),
            sqlite_where=text(f"status IN ({_ACTIVE_VALUES})"),
        ),
        Index("ix_appointments_psychologist_start", "psychologist_id", "start_time"),
        Index("ix_appointments_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)  # 내담자
    psychologist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    template_id = Column(Integer, ForeignKey("availability_templates.id"), nullable=False)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # 분
    session_format = Column(
        Enum(SessionFormat, name="session_format", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(
        Enum(AppointmentStatus, name="appointment_status", values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    amount = Column(Numeric(10, 2), nullable=False)

    # 내담자 입력 정보
    patient_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=False)
    reason_for_visit = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)

    # 취소/진행 기록
    is_canceled = Column(Boolean, nullable=False, default=False)
    cancelation_reason = Column(Text, nullable=True)
    canceled_at = Column(UTCDateTime, nullable=True)
    canceled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    joined_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, onupdate=func.now())

    # 관계
    patient = relationship("User", foreign_keys=[user_id])
    psychologist = relationship("User", foreign_keys=[psychologist_id])
    template = relationship("AvailabilityTemplate", back_populates="appointments")
    payments = relationship("Payment", back_populates="appointment")

    # 동시 상태 변경 시 나중 커밋이 StaleDataError로 실패
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, psychologist_id={self.psychologist_id}, "
            f"start={self.start_time}, status={self.status})>"
        )
