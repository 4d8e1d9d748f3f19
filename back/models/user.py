"""
사용자(User) 모델 - 내담자, 심리상담사, 관리자
"""

import enum
from sqlalchemy import Column, Integer, String, Boolean, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base, UTCDateTime


class UserRole(str, enum.Enum):
    PATIENT = "patient"
    PSYCHOLOGIST = "psychologist"
    ADMIN = "admin"


class User(Base):
    """사용자 모델 (계정 발급은 외부 인증 서비스 담당)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(100), nullable=True)
    role = Column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.PATIENT,
    )
    session_fee = Column(Integer, nullable=True)  # 상담사 기본 상담료
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, server_default=func.now())

    # 관계
    availability_templates = relationship("AvailabilityTemplate", back_populates="psychologist")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
