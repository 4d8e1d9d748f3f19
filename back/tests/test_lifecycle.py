from datetime import timedelta

import pytest

from appointment import allocator, service
from config.exception import (
    AlreadyCompletedError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    PastAppointmentError,
    SlotNoLongerAvailableError,
)
from models.appointment import Appointment, AppointmentStatus
from database import SessionLocal
from conftest import NOW, at, booking


@pytest.fixture
def pending(db, patient, psychologist, monday_template):
    appt, _ = allocator.book(db, patient, booking(psychologist.id, at(10), at(10, 50)), NOW)
    return appt


@pytest.fixture
def confirmed(db, pending):
    service.apply_confirm(pending, NOW)
    db.commit()
    db.refresh(pending)
    return pending


class TestCancel:
    def test_patient_cancels_pending(self, db, patient, pending):
        appt = service.cancel(db, pending.id, patient, "Feeling better", NOW)

        assert appt.status == AppointmentStatus.CANCELED
        assert appt.is_canceled is True
        assert appt.canceled_by == patient.id
        assert appt.canceled_at == NOW
        assert appt.cancelation_reason == "Feeling better"

    def test_admin_can_cancel(self, db, admin, confirmed):
        appt = service.cancel(db, confirmed.id, admin, "Psychologist unavailable", NOW)
        assert appt.canceled_by == admin.id

    def test_other_users_cannot_cancel(self, db, other_patient, psychologist, confirmed):
        with pytest.raises(ForbiddenError):
            service.cancel(db, confirmed.id, other_patient, "No", NOW)
        with pytest.raises(ForbiddenError):
            service.cancel(db, confirmed.id, psychologist, "No", NOW)

    def test_cannot_cancel_started_confirmed(self, db, patient, confirmed):
        with pytest.raises(PastAppointmentError):
            service.cancel(db, confirmed.id, patient, "Too late", at(10, 1))

    def test_cannot_cancel_twice(self, db, patient, pending):
        service.cancel(db, pending.id, patient, "First", NOW)

        with pytest.raises(InvalidStateError):
            service.cancel(db, pending.id, patient, "Second", NOW)

    def test_cannot_cancel_completed(self, db, patient, confirmed):
        service.complete(db, confirmed.id, None, at(11))

        with pytest.raises(AlreadyCompletedError):
            service.cancel(db, confirmed.id, patient, "Refund please", at(11))

    def test_cannot_cancel_ongoing(self, db, patient, confirmed):
        service.join(db, confirmed.id, patient, at(9, 58))

        with pytest.raises(InvalidStateError):
            service.apply_cancel(confirmed, patient.id, "Leaving", at(9, 59))


class TestConfirm:
    def test_confirm_is_idempotent(self, confirmed):
        service.apply_confirm(confirmed, NOW)
        assert confirmed.status == AppointmentStatus.CONFIRMED

    def test_cannot_confirm_canceled(self, db, patient, pending):
        service.cancel(db, pending.id, patient, "Changed mind", NOW)

        with pytest.raises(SlotNoLongerAvailableError):
            service.apply_confirm(pending, NOW)


class TestJoin:
    def test_join_inside_window(self, db, patient, confirmed):
        appt = service.join(db, confirmed.id, patient, at(9, 57))

        assert appt.status == AppointmentStatus.ONGOING
        assert appt.joined_at == at(9, 57)

    def test_second_join_keeps_first_timestamp(self, db, patient, psychologist, confirmed):
        service.join(db, confirmed.id, patient, at(10, 10))
        appt = service.join(db, confirmed.id, psychologist, at(10, 20))

        assert appt.joined_at == at(10, 10)

    def test_join_too_early(self, db, patient, confirmed):
        with pytest.raises(InvalidStateError) as exc:
            service.join(db, confirmed.id, patient, at(9, 54))
        assert "join_window_start" in exc.value.details

    def test_join_after_window(self, db, patient, confirmed):
        with pytest.raises(InvalidStateError):
            service.join(db, confirmed.id, patient, at(11, 6))

    def test_join_pending_is_rejected(self, db, patient, pending):
        with pytest.raises(InvalidStateError):
            service.join(db, pending.id, patient, at(10))

    def test_outsider_cannot_join(self, db, other_patient, confirmed):
        with pytest.raises(ForbiddenError):
            service.join(db, confirmed.id, other_patient, at(10))


class TestCompleteAndNoShow:
    def test_complete_ongoing(self, db, patient, confirmed):
        service.join(db, confirmed.id, patient, at(10))
        appt, message = service.complete(db, confirmed.id, "Good progress", at(10, 50))

        assert appt.status == AppointmentStatus.COMPLETED
        assert appt.completed_at == at(10, 50)
        assert appt.notes == "Good progress"
        assert "successfully" in message

    def test_complete_is_idempotent(self, db, confirmed):
        service.complete(db, confirmed.id, None, at(11))
        appt, message = service.complete(db, confirmed.id, None, at(11, 5))

        assert appt.completed_at == at(11)
        assert message == "Appointment is already marked as completed"

    def test_cannot_complete_pending_or_canceled(self, db, patient, pending):
        with pytest.raises(InvalidStateError):
            service.complete(db, pending.id, None, at(11))

        service.cancel(db, pending.id, patient, "Nope", NOW)
        with pytest.raises(InvalidStateError):
            service.complete(db, pending.id, None, at(11))

    def test_mark_no_show(self, db, confirmed):
        appt, _ = service.mark_no_show(db, confirmed.id, at(11))
        assert appt.status == AppointmentStatus.MISSED

        _, message = service.mark_no_show(db, confirmed.id, at(11))
        assert message == "Appointment is already marked as no-show"

        with pytest.raises(InvalidStateError):
            service.complete(db, confirmed.id, None, at(11))


class TestTimeReconciliation:
    def test_pending_expires(self, db, pending):
        assert service.reconcile_time_status(pending, NOW + timedelta(minutes=15)) is False
        assert service.reconcile_time_status(pending, NOW + timedelta(minutes=16)) is True

        assert pending.status == AppointmentStatus.CANCELED
        assert pending.cancelation_reason == service.EXPIRED_REASON
        assert pending.canceled_by is None

    def test_confirmed_without_join_becomes_missed(self, db, confirmed):
        assert service.reconcile_time_status(confirmed, at(11, 5)) is False
        assert service.reconcile_time_status(confirmed, at(11, 6)) is True
        assert confirmed.status == AppointmentStatus.MISSED

    def test_ongoing_after_end_becomes_completed(self, db, patient, confirmed):
        service.join(db, confirmed.id, patient, at(10))

        assert service.reconcile_time_status(confirmed, at(10, 51)) is True
        assert confirmed.status == AppointmentStatus.COMPLETED
        assert confirmed.completed_at == at(10, 51)

    def test_listing_applies_reconciliation(self, db, patient, confirmed):
        appts = service.list_for_actor(db, patient, at(12))

        assert [a.status for a in appts] == [AppointmentStatus.MISSED]

    def test_psychologist_sees_own_appointments_only(
        self, db, psychologist, other_psychologist, admin, confirmed
    ):
        assert len(service.list_for_actor(db, psychologist, NOW)) == 1
        assert service.list_for_actor(db, other_psychologist, NOW) == []
        assert len(service.list_for_actor(db, admin, NOW)) == 1


class TestConcurrentUpdate:
    def test_stale_write_raises_conflict(self, db, patient, confirmed):
        other = SessionLocal()
        try:
            # StaticPool 이라 같은 연결을 공유하므로 버전만 먼저 올려둔다
            twin = other.query(Appointment).filter(Appointment.id == confirmed.id).one()
            twin.notes = "edited elsewhere"
            other.commit()
        finally:
            other.close()

        confirmed.notes = "stale edit"
        with pytest.raises(ConflictError):
            service.commit_or_conflict(db)
