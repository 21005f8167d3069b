"""SQLAlchemy table definitions.

Local storage is a flat key → JSON string map (the shape the browser's
localStorage had), so one table is enough.  Progress records, cached
aggregates and legacy ``course_progress_*`` entries all live here.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from proctorsync.db.engine import Base


class LocalStorageRow(Base):
    __tablename__ = "local_storage"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
