"""Token redemption, lateness and instructor override tests."""
import json
from datetime import datetime, timedelta

import pytest

from rollcall.exceptions import (
    AlreadyRecorded, InvalidToken, MalformedToken, NotEnrolled,
    PreconditionFailed, RecordNotFound, SessionNotOpen
)
from rollcall.models import AttendanceRecord, AttendanceStatus, EnrollmentStatus, SessionStatus
from rollcall.services.attendance_service import assess_lateness
from rollcall.utils.validators import RedeemRequest, StatusOverrideRequest

from conftest import at, current_token

START = datetime(2024, 3, 4, 10, 0)


@pytest.mark.parametrize('offset, expected', [
    (timedelta(minutes=-3), (AttendanceStatus.PRESENT, 0)),
    (timedelta(minutes=2), (AttendanceStatus.PRESENT, 0)),
    (timedelta(minutes=5, seconds=59), (AttendanceStatus.PRESENT, 0)),
    (timedelta(minutes=6), (AttendanceStatus.LATE, 6)),
    (timedelta(minutes=9, seconds=30), (AttendanceStatus.LATE, 9)),
])
def test_assess_lateness(offset, expected):
    assert assess_lateness(START + offset, START, grace_minutes=5) == expected


def redeem(engine, session_id, student, token=None):
    return engine.recorder.redeem(RedeemRequest(
        token=token or current_token(engine, session_id),
        student_id=student.id,
        device_fingerprint='pytest-device',
        ip_address='10.0.0.8'
    ))


def test_redeem_records_present_and_counts(engine, clock, session, enrolled_students):
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)
    clock.advance_to(at(10, 2))

    record = redeem(engine, session.id, enrolled_students[0])

    assert record.status is AttendanceStatus.PRESENT
    assert record.minutes_late == 0
    assert record.scanned_at == at(10, 2)
    assert record.device_fingerprint == 'pytest-device'
    assert record.ip_address == '10.0.0.8'
    assert engine.sessions.get(session.id).attendance_count == 1


def test_redeem_after_grace_is_late(engine, clock, session, enrolled_students):
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)
    clock.advance_to(at(10, 6))

    record = redeem(engine, session.id, enrolled_students[0])

    assert record.status is AttendanceStatus.LATE
    assert record.minutes_late == 6


def test_second_redemption_returns_existing_record(engine, clock, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    first = redeem(engine, session.id, enrolled_students[0])

    clock.advance(timedelta(seconds=45))
    with pytest.raises(AlreadyRecorded) as exc_info:
        redeem(engine, session.id, enrolled_students[0])

    assert exc_info.value.record.id == first.id
    assert exc_info.value.status_code == 409
    assert AttendanceRecord.query.filter_by(session_id=session.id).count() == 1
    assert engine.sessions.get(session.id).attendance_count == 1


def test_expired_token_is_rejected(engine, clock, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    stale = current_token(engine, session.id)
    clock.advance(timedelta(seconds=31))

    with pytest.raises(InvalidToken):
        redeem(engine, session.id, enrolled_students[0], token=stale)


def test_previous_token_still_valid_inside_its_window(engine, clock, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    earlier = current_token(engine, session.id)

    # Rotation at +30s replaces the token while the old one is still inside its window
    clock.advance(timedelta(seconds=30))
    assert current_token(engine, session.id) != earlier

    record = redeem(engine, session.id, enrolled_students[0], token=earlier)
    assert record.status is AttendanceStatus.PRESENT


def test_forged_token_is_rejected(engine, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    data = json.loads(current_token(engine, session.id))
    data["issued_at"] += 1000
    forged = json.dumps(data)

    with pytest.raises(InvalidToken):
        redeem(engine, session.id, enrolled_students[0], token=forged)


def test_garbage_is_malformed(engine, session, enrolled_students):
    engine.lifecycle.activate(session.id)

    with pytest.raises(MalformedToken):
        redeem(engine, session.id, enrolled_students[0], token='hello')


def test_paused_session_rejects_scans(engine, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    token = current_token(engine, session.id)
    engine.lifecycle.pause(session.id)

    with pytest.raises(SessionNotOpen):
        redeem(engine, session.id, enrolled_students[0], token=token)


def test_student_not_enrolled_is_rejected(engine, session, students, enroll):
    enroll(students[0].id, status=EnrollmentStatus.DROPPED)
    engine.lifecycle.activate(session.id)

    with pytest.raises(NotEnrolled):
        redeem(engine, session.id, students[0])
    with pytest.raises(NotEnrolled):
        redeem(engine, session.id, students[1])


def test_attendance_events_are_published(engine, events, session, enrolled_students):
    seen = []
    events.subscribe('session:*:attendance', lambda event: seen.append(event.payload))
    engine.lifecycle.activate(session.id)

    redeem(engine, session.id, enrolled_students[0])

    assert len(seen) == 1
    assert seen[0]['student_id'] == enrolled_students[0].id
    assert seen[0]['attendance_count'] == 1
    assert seen[0]['total_enrolled'] == 3
    assert seen[0]['attendance_rate'] == 33


def test_override_adjusts_count_once(engine, teacher, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    record = redeem(engine, session.id, enrolled_students[0])

    updated = engine.recorder.override_status(StatusOverrideRequest(
        record_id=record.id,
        status=AttendanceStatus.ABSENT,
        changed_by=teacher.id,
        reason='Left after scanning'
    ))

    assert updated.status is AttendanceStatus.ABSENT
    assert updated.status_changed_by == teacher.id
    assert updated.status_change_reason == 'Left after scanning'
    assert engine.sessions.get(session.id).attendance_count == 0

    with pytest.raises(PreconditionFailed):
        engine.recorder.override_status(StatusOverrideRequest(
            record_id=record.id,
            status=AttendanceStatus.PRESENT,
            changed_by=teacher.id
        ))
    assert engine.sessions.get(session.id).attendance_count == 0


def test_override_absent_to_excused_counts(engine, teacher, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    engine.lifecycle.complete(session.id)
    absent = AttendanceRecord.query.filter_by(session_id=session.id).first()

    engine.recorder.override_status(StatusOverrideRequest(
        record_id=absent.id,
        status=AttendanceStatus.EXCUSED,
        changed_by=teacher.id
    ))

    assert engine.sessions.get(session.id).attendance_count == 1


def test_override_unknown_record(engine, teacher):
    with pytest.raises(RecordNotFound):
        engine.recorder.override_status(StatusOverrideRequest(
            record_id=12345,
            status=AttendanceStatus.PRESENT,
            changed_by=teacher.id
        ))


def test_class_scenario(engine, clock, session, enrolled_students):
    """10:00 activate, 10:02 and 10:09 scans, automatic completion at 11:00."""
    alice, bob, carol = enrolled_students

    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)

    clock.advance_to(at(10, 2))
    a = redeem(engine, session.id, alice)
    clock.advance_to(at(10, 9))
    b = redeem(engine, session.id, bob)

    clock.advance_to(at(11))

    assert (a.status, a.minutes_late) == (AttendanceStatus.PRESENT, 0)
    assert (b.status, b.minutes_late) == (AttendanceStatus.LATE, 9)

    stored = engine.sessions.get(session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.attendance_count == 2

    c = engine.records.find(session.id, carol.id)
    assert c.status is AttendanceStatus.ABSENT
    assert c.scanned_at == at(11)
