"""Declarative base shared by the alerting tables."""
from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from panel.utils.time import utcnow


class Base(DeclarativeBase):
    """Surrogate key plus UTC audit timestamps on every row."""

    type_annotation_map = {datetime: DateTime(timezone=True)}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id}>"
