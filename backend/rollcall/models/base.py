"""Base model class with common functionality."""
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional

from rollcall import db


class BaseModel(db.Model):
    """Base model class with common fields and methods."""

    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def save(self) -> 'BaseModel':
        """Save instance to database."""
        db.session.add(self)
        db.session.commit()
        return self

    def to_dict(self, exclude: list = None) -> Dict[str, Any]:
        """Convert instance to dictionary."""
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            key = column.name
            if key in exclude:
                continue
            value = getattr(self, key)
            if isinstance(value, Enum):
                value = value.value
            elif hasattr(value, 'isoformat'):
                value = value.isoformat()
            result[key] = value

        return result

    @classmethod
    def get_by_id(cls, id: int) -> Optional['BaseModel']:
        """Get instance by ID, bypassing any stale identity-map copy."""
        return db.session.get(cls, id, populate_existing=True)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.id}>'
