"""
MeshGate — User SQLAlchemy Model
=================================

What:  ORM model for the `users` table, owned by the user service.

Table Design:
    - Integer primary key assigned by the database on insert
    - email carries a UNIQUE constraint; it is the only duplicate detector
      (the create path inserts and translates the IntegrityError)
    - password holds a bcrypt hash and never leaves the user service
    - created_at / updated_at in UTC

Index on created_at: advanced queries, date ranges and stats all scan by it.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from meshgate.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    A registered user.

    Lifecycle:
        Created by the create-user handler. Never updated or deleted by the
        messaging core.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Unique, case-sensitive as stored",
    )

    password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="bcrypt hash",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        Index("idx_users_created_at", "created_at"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
