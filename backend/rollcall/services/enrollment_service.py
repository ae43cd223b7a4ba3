"""Membership lookups against the enrollments table."""
from typing import List

from rollcall import db
from rollcall.models.enrollment import Enrollment, EnrollmentStatus
from rollcall.services.session_store import store_call


class EnrollmentLookup:
    """Read-only view of who is actively enrolled in a class."""

    @store_call
    def is_actively_enrolled(self, student_id: int, class_id: int) -> bool:
        row = db.session.query(Enrollment.id).filter_by(
            student_id=student_id,
            class_id=class_id,
            status=EnrollmentStatus.ACTIVE
        ).first()
        return row is not None

    @store_call
    def list_active_students(self, class_id: int) -> List[int]:
        rows = db.session.query(Enrollment.student_id).filter_by(
            class_id=class_id,
            status=EnrollmentStatus.ACTIVE
        ).order_by(Enrollment.student_id).all()
        return [row.student_id for row in rows]
