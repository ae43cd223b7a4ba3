"""Class membership, maintained by the catalog layer and only read here."""
from enum import Enum

from rollcall import db
from rollcall.models.base import BaseModel


class EnrollmentStatus(Enum):
    ACTIVE = 'active'
    DROPPED = 'dropped'
    COMPLETED = 'completed'


class Enrollment(BaseModel):
    __tablename__ = 'enrollments'
    __table_args__ = (
        db.UniqueConstraint('student_id', 'class_id', name='uq_enrollment_student_class'),
    )

    student_id = db.Column(db.Integer, nullable=False, index=True)
    class_id = db.Column(db.Integer, nullable=False, index=True)
    status = db.Column(db.Enum(EnrollmentStatus), nullable=False, default=EnrollmentStatus.ACTIVE)

    def __repr__(self):
        return f'<Enrollment {self.student_id}-{self.class_id} {self.status.value}>'
