from datetime import timedelta

import pytest

from appointment import allocator
from appointment.allocator import AlreadyTaken, Claimed
from appointment.service import EXPIRED_REASON, cancel
from config.exception import (
    NotFoundError,
    OutsideAvailabilityError,
    SelfOverlapError,
    SlotConflictError,
    TooManyPendingError,
    ValidationError,
)
from models.appointment import Appointment, AppointmentStatus, SessionFormat
from conftest import NOW, at, booking


def _raw_appointment(patient, psychologist, template, start, end):
    return Appointment(
        user_id=patient.id,
        psychologist_id=psychologist.id,
        template_id=template.id,
        start_time=start,
        end_time=end,
        duration=int((end - start).total_seconds() // 60),
        session_format=SessionFormat.VIDEO,
        status=AppointmentStatus.PENDING,
        amount=100,
        patient_name="Race Condition",
        email="race@example.com",
        phone="010-0000-0000",
        reason_for_visit="Concurrent booking attempt",
        is_canceled=False,
        created_at=NOW,
    )


class TestBook:
    def test_creates_pending_appointment(self, db, patient, psychologist, monday_template):
        appt, template = allocator.book(db, patient, booking(psychologist.id, at(10), at(10, 50)), NOW)

        assert appt.status == AppointmentStatus.PENDING
        assert appt.template_id == monday_template.id
        assert template.id == monday_template.id
        assert appt.duration == 50
        assert appt.amount == 100
        assert appt.created_at == NOW
        assert appt.email == "patient@example.com"

    def test_request_must_fit_inside_template(self, db, patient, psychologist, monday_template):
        with pytest.raises(OutsideAvailabilityError):
            allocator.book(db, patient, booking(psychologist.id, at(15, 30), at(16, 30)), NOW)

        appt, _ = allocator.book(db, patient, booking(psychologist.id, at(15), at(16)), NOW)
        assert appt.end_time == at(16)

    def test_rejects_overlap_with_active_appointment(
        self, db, patient, other_patient, psychologist, monday_template
    ):
        allocator.book(db, patient, booking(psychologist.id, at(10), at(11)), NOW)

        with pytest.raises(SlotConflictError):
            allocator.book(db, other_patient, booking(psychologist.id, at(10, 30), at(11, 30)), NOW)

    def test_back_to_back_is_allowed(self, db, patient, other_patient, psychologist, monday_template):
        allocator.book(db, patient, booking(psychologist.id, at(10), at(11)), NOW)
        appt, _ = allocator.book(db, other_patient, booking(psychologist.id, at(11), at(12)), NOW)

        assert appt.start_time == at(11)

    def test_canceled_slot_is_rebookable(self, db, patient, other_patient, psychologist, monday_template):
        first, _ = allocator.book(db, patient, booking(psychologist.id, at(10), at(11)), NOW)
        cancel(db, first.id, patient, "Schedule changed", NOW)

        second, _ = allocator.book(db, other_patient, booking(psychologist.id, at(10), at(11)), NOW)
        assert second.status == AppointmentStatus.PENDING

    def test_patient_cannot_double_book_across_psychologists(
        self, db, patient, psychologist, other_psychologist, monday_template, other_monday_template
    ):
        allocator.book(db, patient, booking(psychologist.id, at(10), at(11)), NOW)

        with pytest.raises(SelfOverlapError):
            allocator.book(db, patient, booking(other_psychologist.id, at(10, 30), at(11, 30)), NOW)

    def test_pending_cap(self, db, patient, psychologist, monday_template):
        for hour in (10, 11, 12):
            allocator.book(db, patient, booking(psychologist.id, at(hour), at(hour, 50)), NOW)

        with pytest.raises(TooManyPendingError):
            allocator.book(db, patient, booking(psychologist.id, at(13), at(13, 50)), NOW)

    def test_stale_pending_is_released(self, db, patient, other_patient, psychologist, monday_template):
        stale, _ = allocator.book(db, patient, booking(psychologist.id, at(10), at(11)), NOW)

        later = NOW + timedelta(minutes=16)
        appt, _ = allocator.book(db, other_patient, booking(psychologist.id, at(10), at(11)), later)

        db.refresh(stale)
        assert stale.status == AppointmentStatus.CANCELED
        assert stale.cancelation_reason == EXPIRED_REASON
        assert appt.status == AppointmentStatus.PENDING

    @pytest.mark.parametrize("start, end, message", [
        (at(7), at(8), "Cannot book appointments in the past"),
        (at(11), at(10), "Invalid time range"),
        (at(11), at(11), "Invalid time range"),
        (at(10), at(10, 10), "Duration must be"),
        (at(10), at(13, 30), "Duration must be"),
    ])
    def test_rejects_invalid_ranges(self, db, patient, psychologist, monday_template, start, end, message):
        with pytest.raises(ValidationError) as exc:
            allocator.book(db, patient, booking(psychologist.id, start, end), NOW)
        assert message in exc.value.message

    def test_unknown_psychologist(self, db, patient, admin):
        with pytest.raises(NotFoundError):
            allocator.book(db, patient, booking(admin.id, at(10), at(11)), NOW)


class TestClaimSlot:
    def test_second_identical_claim_loses(self, db, patient, other_patient, psychologist, monday_template):
        """순차 호출만 다룬다. 동일 구간은 부분 유니크 인덱스가 막고,
        겹치는 구간의 동시 요청은 test_allocator_postgres.py 에서 확인한다."""
        first = allocator.claim_slot(db, _raw_appointment(patient, psychologist, monday_template, at(10), at(11)))
        second = allocator.claim_slot(
            db, _raw_appointment(other_patient, psychologist, monday_template, at(10), at(11))
        )

        assert isinstance(first, Claimed)
        assert isinstance(second, AlreadyTaken)
        assert second.psychologist_id == psychologist.id

        active = db.query(Appointment).filter(Appointment.status == AppointmentStatus.PENDING).count()
        assert active == 1

    def test_inactive_row_does_not_block_claim(self, db, patient, other_patient, psychologist, monday_template):
        old = _raw_appointment(patient, psychologist, monday_template, at(10), at(11))
        old.status = AppointmentStatus.CANCELED
        old.is_canceled = True
        assert isinstance(allocator.claim_slot(db, old), Claimed)

        result = allocator.claim_slot(
            db, _raw_appointment(other_patient, psychologist, monday_template, at(10), at(11))
        )
        assert isinstance(result, Claimed)


class TestCheckAvailability:
    def test_reports_covering_template(self, db, patient, psychologist, monday_template):
        check = allocator.check_availability(db, patient.id, psychologist.id, at(12), at(13), NOW)

        assert check.template.id == monday_template.id
        assert db.query(Appointment).count() == 0

    def test_reports_conflict(self, db, patient, other_patient, psychologist, monday_template):
        allocator.book(db, patient, booking(psychologist.id, at(12), at(13)), NOW)

        with pytest.raises(SlotConflictError):
            allocator.check_availability(db, other_patient.id, psychologist.id, at(12, 30), at(13, 30), NOW)
