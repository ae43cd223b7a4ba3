"""Batch creation of scheduled sessions from a weekly template."""
import logging
from datetime import timedelta
from typing import List

from sqlalchemy import func

from rollcall import db
from rollcall.models.class_session import ClassSession, SessionStatus
from rollcall.services.session_store import store_call
from rollcall.utils.validators import GenerateSessionsRequest

logger = logging.getLogger(__name__)

MAX_GENERATED_SESSIONS = 400


class SessionPlanner:
    """Creates numbered ``scheduled`` sessions for a class."""

    @store_call
    def next_session_number(self, class_id: int) -> int:
        current = db.session.query(func.max(ClassSession.session_number)).filter_by(class_id=class_id).scalar()
        return (current or 0) + 1

    @store_call
    def generate(self, request: GenerateSessionsRequest) -> List[ClassSession]:
        """Create one session per matching weekday between the two dates, inclusive.

        Numbering continues after the class's existing sessions.
        """
        number = self.next_session_number(request.class_id)
        sessions = []

        day = request.first_date
        while day <= request.last_date:
            if day.weekday() in request.weekdays:
                if len(sessions) >= MAX_GENERATED_SESSIONS:
                    break
                sessions.append(ClassSession(
                    class_id=request.class_id,
                    instructor_id=request.instructor_id,
                    session_number=number,
                    date=day,
                    start_time=request.start_time,
                    end_time=request.end_time,
                    room_location=request.room_location,
                    status=SessionStatus.SCHEDULED,
                    is_active=False,
                    attendance_count=0,
                    total_enrolled=0
                ))
                number += 1
            day += timedelta(days=1)

        db.session.add_all(sessions)
        db.session.commit()

        logger.info('Generated %d sessions for class %s', len(sessions), request.class_id)
        return sessions
