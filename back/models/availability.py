"""
상담사 주간 반복 가용 시간(AvailabilityTemplate) 모델
"""

from sqlalchemy import Column, Integer, Time, Boolean, ForeignKey, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base, UTCDateTime


class AvailabilityTemplate(Base):
    """요일 + 시간 범위로 정의되는 주간 가용 시간.

    구체적인 날짜별 슬롯은 저장하지 않는다. 예약 가능한 구간은
    템플릿에서 활성 예약을 빼서 조회 시점에 계산한다.
    """
    __tablename__ = "availability_templates"
    __table_args__ = (
        Index("ix_availability_psychologist_active", "psychologist_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    psychologist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    days_of_week = Column(JSON, nullable=False)  # 0=일요일 ... 6=토요일
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    # 관계
    psychologist = relationship("User", back_populates="availability_templates")
    appointments = relationship("Appointment", back_populates="template")

    def shares_day_with(self, days) -> bool:
        return bool(set(self.days_of_week) & set(days))

    def __repr__(self):
        return (
            f"<AvailabilityTemplate(id={self.id}, psychologist_id={self.psychologist_id}, "
            f"days={self.days_of_week}, {self.start_time}-{self.end_time})>"
        )
