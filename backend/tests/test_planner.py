"""Session planner tests."""
from datetime import date, time

import pytest

from rollcall.exceptions import ValidationError
from rollcall.models import SessionStatus
from rollcall.utils.validators import Validator


def generate(engine, class_id=11, **overrides):
    data = {
        'first_date': '2024-03-04',
        'last_date': '2024-03-17',
        'days_of_week': ['monday', 'Wednesday'],
        'start_time': '09:00',
        'end_time': '10:30',
        'room_location': 'Lab 3',
    }
    data.update(overrides)
    return engine.planner.generate(Validator.generate_sessions_request(class_id, data))


def test_generates_matching_weekdays(engine):
    sessions = generate(engine)

    assert [s.date for s in sessions] == [
        date(2024, 3, 4), date(2024, 3, 6), date(2024, 3, 11), date(2024, 3, 13)
    ]
    assert [s.session_number for s in sessions] == [1, 2, 3, 4]
    assert all(s.status is SessionStatus.SCHEDULED for s in sessions)
    assert sessions[0].start_time == time(9, 0)
    assert sessions[0].end_time == time(10, 30)
    assert sessions[0].room_location == 'Lab 3'


def test_numbering_continues_after_existing_sessions(engine):
    generate(engine)
    more = generate(engine, first_date='2024-03-18', last_date='2024-03-24')

    assert [s.session_number for s in more] == [5, 6]
    assert len(engine.sessions.list_for_class(11)) == 6


def test_classes_are_numbered_independently(engine):
    generate(engine, class_id=11)
    other = generate(engine, class_id=12, days_of_week='friday')

    assert [s.session_number for s in other] == [1, 2]


@pytest.mark.parametrize('overrides', [
    {'last_date': '2024-03-01'},
    {'end_time': '08:00'},
    {'days_of_week': ['someday']},
    {'days_of_week': []},
    {'first_date': '04/03/2024'},
])
def test_invalid_templates_are_rejected(engine, overrides):
    with pytest.raises(ValidationError):
        generate(engine, **overrides)
