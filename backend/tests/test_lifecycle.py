"""Session lifecycle controller tests."""
from datetime import timedelta

import pytest

from rollcall.exceptions import PreconditionFailed, SessionNotFound
from rollcall.models import AttendanceRecord, AttendanceStatus, SessionStatus
from rollcall.utils.validators import ActivateRequest, CancelRequest, PauseRequest

from conftest import at


def reload(engine, session_id):
    return engine.sessions.get(session_id)


def test_activate_opens_session_and_starts_rotation(engine, clock, session, enrolled_students):
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id, notes='Room changed')

    stored = reload(engine, session.id)
    assert stored.status is SessionStatus.ACTIVE
    assert stored.is_active is True
    assert stored.activated_at == at(10)
    assert stored.notes == 'Room changed'
    assert stored.total_enrolled == 3
    assert stored.qr_token and stored.qr_secret
    assert stored.qr_expires_at == at(10, 0, 30)
    assert engine.rotation.is_rotating(session.id)


def test_pause_clears_token_and_stops_rotation(engine, clock, session):
    engine.lifecycle.activate(session.id)
    engine.lifecycle.pause(session.id)

    stored = reload(engine, session.id)
    assert stored.status is SessionStatus.PAUSED
    assert stored.is_active is False
    assert stored.qr_token is None
    assert stored.qr_expires_at is None
    assert not engine.rotation.is_rotating(session.id)


def test_resume_issues_fresh_token(engine, clock, session):
    engine.lifecycle.activate(session.id)
    first = reload(engine, session.id).qr_token
    engine.lifecycle.pause(session.id)

    clock.advance(timedelta(minutes=3))
    engine.lifecycle.resume(session.id)

    stored = reload(engine, session.id)
    assert stored.status is SessionStatus.ACTIVE
    assert stored.qr_token and stored.qr_token != first
    assert stored.qr_expires_at == clock.now() + timedelta(seconds=30)
    assert engine.rotation.is_rotating(session.id)


@pytest.mark.parametrize('setup, action', [
    ([], 'pause'),
    ([], 'resume'),
    ([], 'complete'),
    (['activate'], 'activate'),
    (['activate'], 'resume'),
    (['activate', 'pause'], 'pause'),
    (['activate', 'complete'], 'activate'),
    (['activate', 'complete'], 'cancel'),
    (['cancel'], 'activate'),
    (['cancel'], 'complete'),
])
def test_illegal_transitions_leave_state_unchanged(engine, session, setup, action):
    for step in setup:
        getattr(engine.lifecycle, step)(session.id)
    before = reload(engine, session.id)
    status, token = before.status, before.qr_token

    with pytest.raises(PreconditionFailed):
        getattr(engine.lifecycle, action)(session.id)

    after = reload(engine, session.id)
    assert after.status is status
    assert after.qr_token == token


def test_unknown_session_raises_not_found(engine):
    with pytest.raises(SessionNotFound):
        engine.lifecycle.activate(9999)


def test_cancel_from_scheduled_and_paused(engine, make_session):
    scheduled = make_session()
    paused = make_session()
    engine.lifecycle.activate(paused.id)
    engine.lifecycle.pause(paused.id)

    engine.lifecycle.cancel(scheduled.id, notes='Public holiday')
    engine.lifecycle.cancel(paused.id)

    assert reload(engine, scheduled.id).status is SessionStatus.CANCELLED
    assert reload(engine, scheduled.id).notes == 'Public holiday'
    assert reload(engine, paused.id).status is SessionStatus.CANCELLED


def test_cancel_does_not_reconcile(engine, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    engine.lifecycle.cancel(session.id)

    assert AttendanceRecord.query.filter_by(session_id=session.id).count() == 0


def test_complete_from_paused_reconciles(engine, clock, session, enrolled_students):
    engine.lifecycle.activate(session.id)
    engine.lifecycle.pause(session.id)
    clock.advance(timedelta(minutes=10))

    engine.lifecycle.complete(session.id)

    stored = reload(engine, session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.completed_at == clock.now()
    records = AttendanceRecord.query.filter_by(session_id=session.id).all()
    assert len(records) == 3
    assert all(r.status is AttendanceStatus.ABSENT for r in records)


def test_hard_timeout_completes_session(engine, clock, session, enrolled_students):
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)

    clock.advance_to(at(11))

    stored = reload(engine, session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.completed_at == at(11)
    assert not engine.rotation.is_rotating(session.id)


def test_hard_timeout_after_manual_completion_is_noop(engine, clock, session, enrolled_students):
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)
    clock.advance_to(at(10, 30))
    engine.lifecycle.complete(session.id)

    clock.advance_to(at(11, 5))

    stored = reload(engine, session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.completed_at == at(10, 30)
    assert AttendanceRecord.query.filter_by(session_id=session.id).count() == 3


def test_hard_timeout_also_completes_paused_session(engine, clock, session):
    clock.advance_to(at(10))
    engine.lifecycle.activate(session.id)
    engine.lifecycle.pause(session.id)

    clock.advance_to(at(11))

    assert reload(engine, session.id).status is SessionStatus.COMPLETED


def test_status_events_are_published(engine, events, session):
    seen = []
    events.subscribe(f'session:{session.id}:status', lambda event: seen.append(event.payload['status']))

    engine.lifecycle.activate(session.id)
    engine.lifecycle.pause(session.id)
    engine.lifecycle.resume(session.id)
    engine.lifecycle.complete(session.id)

    assert seen == ['active', 'paused', 'active', 'completed']


def test_apply_dispatches_request_variants(engine, session):
    engine.lifecycle.apply(ActivateRequest(session_id=session.id))
    engine.lifecycle.apply(PauseRequest(session_id=session.id))
    engine.lifecycle.apply(CancelRequest(session_id=session.id, notes='Fire drill'))

    assert reload(engine, session.id).status is SessionStatus.CANCELLED
