"""ORM models for users, teams, licenses, the ledger, tasks and notifications."""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bountyboard.db.base import Base, BigIntPK, UTCDateTime, utcnow


class Role(str, enum.Enum):
    """Authorization tiers. Exactly three."""

    MEMBER = "member"
    LEAD = "lead"
    ADMIN = "admin"


class TaskStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    COMPLETED = "COMPLETED"


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TransactionType(str, enum.Enum):
    BOUNTY = "BOUNTY"
    PENALTY = "PENALTY"
    ADJUSTMENT = "ADJUSTMENT"


MONEY = Numeric(12, 2)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table. Never hard-deleted; see ``is_active``."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
        CheckConstraint("role IN ('member', 'lead', 'admin')", name="ck_users_role"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.MEMBER.value)
    team_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    bio: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    team: Mapped[Team | None] = relationship("Team", back_populates="members", foreign_keys=[team_id])


# ---------------------------------------------------------------------------
# Teams & licenses
# ---------------------------------------------------------------------------


class Team(Base):
    """A licensed team. Soft-deleted via ``is_active``."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", use_alter=True, name="fk_teams_created_by"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    members: Mapped[list[User]] = relationship("User", back_populates="team", foreign_keys="User.team_id")
    license: Mapped[License | None] = relationship("License", back_populates="team", uselist=False)


class License(Base):
    """A catalog key bound to exactly one team."""

    __tablename__ = "licenses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    team_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("teams.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    team_name: Mapped[str] = mapped_column(String(100), nullable=False)
    license_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    expiration_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    team: Mapped[Team] = relationship("Team", back_populates="license")


class UserLicense(Base):
    """Legacy direct user<->license association. Read-only lookups only."""

    __tablename__ = "user_licenses"
    __table_args__ = (UniqueConstraint("user_id", "license_id", name="uq_user_licenses_pair"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    license_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Transaction(Base):
    """Immutable balance movement. ``amount`` is signed; penalties are negative."""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("type IN ('BOUNTY', 'PENALTY', 'ADJUSTMENT')", name="ck_transactions_type"),
        CheckConstraint("balance_after >= 0", name="ck_transactions_balance_after"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    task_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    balance_before: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    created_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    task: Mapped[Task | None] = relationship("Task", lazy="joined")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(Base):
    """A bounty-carrying unit of work."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("bounty_amount > 0", name="ck_tasks_bounty_positive"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'IN_PROGRESS', 'REVIEW', 'COMPLETED')", name="ck_tasks_status"
        ),
        CheckConstraint("priority IN ('LOW', 'MEDIUM', 'HIGH')", name="ck_tasks_priority"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskStatus.AVAILABLE.value)
    priority: Mapped[str] = mapped_column(String(8), nullable=False, default=TaskPriority.MEDIUM.value)
    bounty_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    tags: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    team_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("teams.id"), nullable=True, index=True)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    assigned_to: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True, index=True)
    assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    creator: Mapped[User] = relationship("User", foreign_keys=[created_by], lazy="joined")
    assignee: Mapped[User | None] = relationship("User", foreign_keys=[assigned_to], lazy="joined")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notifications."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_task_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)
