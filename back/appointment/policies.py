"""
예약 관련 권한 판단

라우터마다 역할 비교를 반복하지 않고 이 함수들로 판단한다.
"""

from models.user import User, UserRole


def is_participant(actor: User, appointment) -> bool:
    return actor.id in (appointment.user_id, appointment.psychologist_id)


def can_view(actor: User, appointment) -> bool:
    return actor.is_admin or is_participant(actor, appointment)


def can_join(actor: User, appointment) -> bool:
    return actor.is_admin or is_participant(actor, appointment)


def can_cancel(actor: User, appointment) -> bool:
    """내담자 본인 또는 관리자"""
    return actor.is_admin or actor.id == appointment.user_id


def can_edit_notes(actor: User, appointment) -> bool:
    return actor.is_admin or (
        actor.role == UserRole.PSYCHOLOGIST and actor.id == appointment.psychologist_id
    )


def can_administer(actor: User) -> bool:
    """완료/노쇼 처리, 환불 등 관리자 전용 작업"""
    return actor.is_admin


def can_report_payment(actor: User, payment) -> bool:
    """결제 당사자(내담자) 또는 관리자만 결제 상태를 통지할 수 있다"""
    return can_administer(actor) or actor.id == payment.user_id
