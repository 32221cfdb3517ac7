from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint, Date, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from idealedger.roles import RoleKind, RoleTerms, terms_from_columns
from idealedger.utils import json_parse, new_id, utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    skills_json: Mapped[str] = mapped_column(Text, default="[]")
    interests_json: Mapped[str] = mapped_column(Text, default="[]")
    portfolio: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    roles: Mapped[list[RoleAssignment]] = relationship("RoleAssignment", back_populates="user")

    @property
    def skills(self) -> list[str]:
        return json_parse(self.skills_json, [])

    @property
    def interests(self) -> list[str]:
        return json_parse(self.interests_json, [])

    def __repr__(self):
        return f"<User {self.email}>"


class Idea(Base):
    __tablename__ = "ideas"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    problem_category: Mapped[str] = mapped_column(String(200), nullable=False)
    solution: Mapped[str] = mapped_column(Text, nullable=False)
    visibility: Mapped[str] = mapped_column(String(10), default="private", nullable=False)
    owner_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    roles: Mapped[list[RoleAssignment]] = relationship(
        "RoleAssignment", back_populates="idea", order_by="RoleAssignment.seq",
    )

    __table_args__ = (
        CheckConstraint("visibility IN ('public', 'private')", name="ck_ideas_visibility"),
    )


class RoleAssignment(Base):
    """One participant's stake in an idea.

    Kind-specific terms live in nullable columns; :attr:`terms` exposes them as
    the matching variant from :mod:`idealedger.roles`.
    """

    __tablename__ = "role_assignments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    # Insertion order within the ledger.
    seq: Mapped[int] = mapped_column(nullable=False, index=True)
    idea_id: Mapped[str] = mapped_column(String(32), ForeignKey("ideas.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    equity_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    debt_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    idea: Mapped[Idea] = relationship("Idea", back_populates="roles")
    user: Mapped[User] = relationship("User", back_populates="roles")

    __table_args__ = (
        UniqueConstraint("idea_id", "user_id", name="uq_role_assignments_idea_user"),
        CheckConstraint(
            "equity_percentage IS NULL OR (equity_percentage > 0 AND equity_percentage <= 100)",
            name="ck_role_assignments_equity_range",
        ),
        CheckConstraint("debt_amount IS NULL OR debt_amount > 0", name="ck_role_assignments_debt_positive"),
    )

    @property
    def role_kind(self) -> RoleKind:
        return RoleKind(self.kind)

    @property
    def terms(self) -> RoleTerms:
        return terms_from_columns(
            self.role_kind, self.equity_percentage, self.debt_amount, self.start_date, self.end_date,
        )
