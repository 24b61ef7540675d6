"""SQLAlchemy ORM models for the URL shortener service.

Data Model Layout
=================
::
    short_urls table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ origin_url (TEXT NOT NULL)
    ├─ owner_id (VARCHAR(64) NOT NULL, INDEXED)
    ├─ hits (BIGINT DEFAULT 0)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

Key Behaviours
===============
- ``code`` and ``origin_url`` never change after insert.
- ``hits`` is only ever changed by an additive ``UPDATE ... SET hits = hits + n``
  issued by the hit aggregator, never by read-modify-write.
- Deletion is a hard delete.

Classes:
    ShortURL:  A short code owned by a user, with its flushed hit count.
"""

import datetime

from sqlalchemy import BigInteger, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["ShortURL"]


class ShortURL(Base):
    __tablename__ = "short_urls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    origin_url: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    hits: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ShortURL(id={self.id}, code='{self.code}', owner_id='{self.owner_id}', hits={self.hits})>"
