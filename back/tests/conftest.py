"""
공용 pytest fixture

인메모리 SQLite 엔진을 쓰고, 테스트마다 스키마를 새로 만든다.
현재 시각은 clock fixture로 고정하고 결제 제공자는 FakeGateway로 대체한다.
"""

import os
from datetime import datetime, time, timezone
from decimal import Decimal

# 앱 모듈 import 전에 테스트 환경 설정
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["SCHEDULING_TIMEZONE"] = "UTC"

import pytest
from fastapi.testclient import TestClient

from app import app
from database import Base, SessionLocal, engine
from auth.security import create_access_token
from config.dependencies import get_now, get_payment_gateway
from models.user import User, UserRole
from models.availability import AvailabilityTemplate
from payment.gateway import IntentState, PaymentGateway, PaymentIntentResult, to_minor_units
from config.exception import PaymentGatewayError

# 2030-01-07 은 월요일
NOW = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)
MONDAY = 1


def at(hour: int, minute: int = 0, day: int = 7) -> datetime:
    return datetime(2030, 1, day, hour, minute, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime):
        self.now = now


class FakeGateway(PaymentGateway):
    """Stripe 대신 호출 기록과 결제 의도 상태만 관리하는 결제 제공자"""

    def __init__(self):
        self.intents = []
        self.refunds = []
        self.fail_refunds = False
        self.states = {}
        self._counter = 0

    def create_intent(self, amount: Decimal, metadata):
        self._counter += 1
        intent_id = f"pi_test_{self._counter}"
        self.intents.append((intent_id, amount, metadata))
        self.states[intent_id] = IntentState(
            intent_id=intent_id,
            status="requires_payment_method",
            amount=to_minor_units(amount),
            refunded=False,
        )
        return PaymentIntentResult(intent_id=intent_id, client_secret=f"{intent_id}_secret")

    def retrieve_intent(self, intent_id: str) -> IntentState:
        return self.states[intent_id]

    def refund(self, intent_id: str, reason: str) -> None:
        if self.fail_refunds:
            raise PaymentGatewayError("Refund failed with status: failed")
        self.refunds.append((intent_id, reason))
        if intent_id in self.states:
            self.states[intent_id].refunded = True

    # 카드 결제 결과를 제공자 측에 반영
    def succeed(self, intent_id: str) -> None:
        self.states[intent_id].status = "succeeded"

    def refund_outside(self, intent_id: str) -> None:
        """대시보드 등 앱 외부에서 이루어진 환불"""
        self.states[intent_id].refunded = True


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, clock, gateway):
    app.dependency_overrides[get_now] = lambda: clock.now
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _user(db, email, role, session_fee=None):
    user = User(email=email, full_name=email.split("@")[0], role=role, session_fee=session_fee, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def patient(db):
    return _user(db, "patient@example.com", UserRole.PATIENT)


@pytest.fixture
def other_patient(db):
    return _user(db, "other@example.com", UserRole.PATIENT)


@pytest.fixture
def psychologist(db):
    return _user(db, "dr.kim@example.com", UserRole.PSYCHOLOGIST, session_fee=100)


@pytest.fixture
def other_psychologist(db):
    return _user(db, "dr.lee@example.com", UserRole.PSYCHOLOGIST, session_fee=80)


@pytest.fixture
def admin(db):
    return _user(db, "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def monday_template(db, psychologist):
    """월요일 10:00-16:00"""
    template = AvailabilityTemplate(
        psychologist_id=psychologist.id,
        days_of_week=[MONDAY],
        start_time=time(10, 0),
        end_time=time(16, 0),
        is_active=True,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@pytest.fixture
def other_monday_template(db, other_psychologist):
    template = AvailabilityTemplate(
        psychologist_id=other_psychologist.id,
        days_of_week=[MONDAY],
        start_time=time(9, 0),
        end_time=time(18, 0),
        is_active=True,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def auth_header(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


def booking_payload(psychologist_id: int, start: datetime, end: datetime, **overrides) -> dict:
    payload = {
        "psychologist_id": psychologist_id,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "session_format": "video",
        "patient_name": "Hong Gildong",
        "email": "patient@example.com",
        "phone": "+82 10-1234-5678",
        "reason_for_visit": "Persistent anxiety and trouble sleeping",
    }
    payload.update(overrides)
    return payload


def booking(psychologist_id: int, start: datetime, end: datetime, **overrides):
    from schemas.appointment import AppointmentCreate

    return AppointmentCreate(**booking_payload(psychologist_id, start, end, **overrides))
