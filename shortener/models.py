"""Data model for the URL shortener service.

This module defines the domain record shared by both storage backends and the
SQLAlchemy declarative model the relational backend persists it with.

Data Model Layout
=================
::
    short_urls table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_url (VARCHAR(16) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ user_id (VARCHAR(64) NOT NULL)
    ├─ is_deleted (BOOLEAN DEFAULT FALSE)
    └─ UNIQUE (user_id, original_url)

Class Relationship Diagram
=========================
::
    URLMapping (domain, frozen dataclass)
    ├─ short_key: str
    ├─ original_url: str
    ├─ user_id: str
    └─ deleted: bool

    ShortURL (ORM row)
    ├─ id: int (PK)
    ├─ short_url: str  ── URLMapping.short_key
    ├─ original_url: str
    ├─ user_id: str
    └─ is_deleted: bool ── URLMapping.deleted

Key Behaviours
===============
- short_url is unique and indexed for fast redirects.
- (user_id, original_url) is unique: shortening is idempotent per user.
- Rows are never removed; is_deleted only ever flips from false to true.

Classes:
    URLMapping:  Backend-independent mapping record.
    ShortURL:  ORM row for the relational backend.
"""

from dataclasses import dataclass

from sqlalchemy import Boolean, Index, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["URLMapping", "ShortURL"]


@dataclass(frozen=True, slots=True)
class URLMapping:
    short_key: str
    original_url: str
    user_id: str
    deleted: bool = False


class ShortURL(Base):
    __tablename__ = "short_urls"
    __table_args__ = (Index("ux_short_urls_user_original", "user_id", "original_url", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_url: Mapped[str] = mapped_column(String(16), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)

    def to_mapping(self) -> URLMapping:
        return URLMapping(
            short_key=self.short_url,
            original_url=self.original_url,
            user_id=self.user_id,
            deleted=self.is_deleted,
        )

    def __repr__(self) -> str:
        return f"<ShortURL(id={self.id}, short_url='{self.short_url}', is_deleted={self.is_deleted})>"
