"""
결제(Payment) 모델 - 외부 결제 제공자 기록과 예약 연결
"""

import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, Numeric, ForeignKey, Enum, Index, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base, UTCDateTime


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


class Payment(Base):
    """결제 모델"""
    __tablename__ = "payments"
    __table_args__ = (
        # 예약 하나에 살아있는 결제는 하나
        Index(
            "uq_payments_live_appointment",
            "appointment_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'completed')"),
            sqlite_where=text("status IN ('pending', 'completed')"),
        ),
        Index("ix_payments_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    psychologist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(
        Enum(PaymentStatus, name="payment_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    stripe_payment_intent_id = Column(String(255), unique=True, index=True, nullable=False)
    refund_reason = Column(Text, nullable=True)
    needs_reconciliation = Column(Boolean, nullable=False, default=False)  # 수동 정산 필요

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, onupdate=func.now())

    # 관계
    appointment = relationship("Appointment", back_populates="payments")

    def __repr__(self):
        return f"<Payment(id={self.id}, intent={self.stripe_payment_intent_id}, status={self.status})>"
