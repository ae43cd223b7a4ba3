"""Absent-record reconciliation tests."""
from datetime import time

from rollcall.models import AttendanceRecord, AttendanceStatus, EnrollmentStatus, SessionStatus
from rollcall.utils.validators import RedeemRequest

from conftest import at, current_token


def test_creates_absent_for_students_without_record(engine, clock, session, make_user, enroll):
    students = [make_user(f'learner{i}@example.com') for i in range(5)]
    for student in students:
        enroll(student.id)
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)
    for student in students[:2]:
        engine.recorder.redeem(RedeemRequest(token=current_token(engine, session.id), student_id=student.id))

    engine.lifecycle.complete(session.id)

    records = AttendanceRecord.query.filter_by(session_id=session.id).all()
    assert len(records) == 5
    absent = {r.student_id for r in records if r.status is AttendanceStatus.ABSENT}
    assert absent == {s.id for s in students[2:]}


def test_dropped_students_are_not_marked(engine, session, students, enroll):
    enroll(students[0].id)
    enroll(students[1].id, status=EnrollmentStatus.DROPPED)
    engine.lifecycle.activate(session.id)

    engine.lifecycle.complete(session.id)

    assert [r.student_id for r in AttendanceRecord.query.filter_by(session_id=session.id)] == [students[0].id]


def test_reconcile_twice_adds_nothing(engine, clock, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    engine.lifecycle.complete(session.id)
    stored = engine.sessions.get(session.id)

    assert engine.reconciler.reconcile(stored, clock.now()) == []
    assert AttendanceRecord.query.filter_by(session_id=session.id).count() == 3


def test_backfill_class_covers_completed_sessions_only(engine, clock, make_session, students, enroll):
    first = make_session()
    second = make_session(start=time(12, 0), end=time(13, 0))
    untouched = make_session(start=time(14, 0), end=time(15, 0))
    for session in (first, second):
        engine.lifecycle.activate(session.id)
        engine.lifecycle.complete(session.id)

    # Enrolled after the sessions completed
    for student in students:
        enroll(student.id)

    result = engine.reconciler.backfill_class(first.class_id, clock.now())

    assert result == {'records_created': 6, 'sessions_processed': 2}
    assert engine.sessions.get(untouched.id).status is SessionStatus.SCHEDULED
    assert AttendanceRecord.query.filter_by(session_id=untouched.id).count() == 0
    assert engine.reconciler.backfill_class(first.class_id, clock.now())['records_created'] == 0
