"""Durable session state with compare-and-set transitions."""
import functools
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy import update
from sqlalchemy.exc import InterfaceError, OperationalError

from rollcall import db
from rollcall.exceptions import StoreUnavailable
from rollcall.models.class_session import ClassSession, SessionStatus
from rollcall.services.token_service import Token, from_millis

logger = logging.getLogger(__name__)


def store_call(func):
    """Translate connectivity failures into ``StoreUnavailable``.

    No retry happens here: a repeated write could double-apply a counter
    increment, so retrying is left to the caller.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            db.session.rollback()
            logger.error('Store call %s failed: %s', func.__qualname__, exc)
            raise StoreUnavailable() from exc
    return wrapper


class SessionStore:
    """Reads and atomic writes against ``class_sessions``.

    Every mutation is a single conditional UPDATE; a status read earlier is
    never trusted at write time.
    """

    @store_call
    def get(self, session_id: int) -> Optional[ClassSession]:
        return ClassSession.get_by_id(session_id)

    @store_call
    def list_for_class(self, class_id: int, status: SessionStatus = None) -> List[ClassSession]:
        query = ClassSession.query.filter_by(class_id=class_id)
        if status is not None:
            query = query.filter_by(status=status)
        return query.order_by(ClassSession.date, ClassSession.session_number).all()

    @store_call
    def instructor_ids_for_class(self, class_id: int) -> Set[int]:
        rows = db.session.query(ClassSession.instructor_id).filter(
            ClassSession.class_id == class_id,
            ClassSession.instructor_id.isnot(None)
        ).distinct().all()
        return {row.instructor_id for row in rows}

    @store_call
    def compare_and_set_status(
        self,
        session_id: int,
        expected: Union[SessionStatus, Iterable[SessionStatus]],
        new_status: SessionStatus,
        fields: Dict[str, Any] = None
    ) -> bool:
        """Move the session to ``new_status`` only if it is currently in ``expected``.

        Keeps ``is_active`` in step with the status and clears the current
        token whenever the session leaves ``active``.
        """
        if isinstance(expected, SessionStatus):
            expected = (expected,)
        values = dict(fields or {})
        values['status'] = new_status
        values['is_active'] = new_status is SessionStatus.ACTIVE
        if new_status is not SessionStatus.ACTIVE:
            values.update(qr_token=None, qr_secret=None, qr_expires_at=None)

        stmt = (
            update(ClassSession)
            .where(ClassSession.id == session_id, ClassSession.status.in_(tuple(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount == 1

    @store_call
    def replace_token(self, session_id: int, token: Token) -> bool:
        """Store ``token`` as the current one, but only while the session is active."""
        stmt = (
            update(ClassSession)
            .where(ClassSession.id == session_id, ClassSession.status == SessionStatus.ACTIVE)
            .values(
                qr_token=token.to_string(),
                qr_secret=token.signature,
                qr_expires_at=from_millis(token.expires_at)
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount == 1

    @store_call
    def increment_attendance_count(self, session_id: int, by: int = 1) -> None:
        stmt = (
            update(ClassSession)
            .where(ClassSession.id == session_id)
            .values(attendance_count=ClassSession.attendance_count + by)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(stmt)
        db.session.commit()
