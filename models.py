from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Role(str, Enum):
    regular = "Regular"
    admin = "Admin"


ROLE_ENUM = SAEnum(
    Role,
    name="role",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(ROLE_ENUM, nullable=False, default=Role.regular)
    refresh_token: Mapped[Optional[str]] = mapped_column(String(512))


class Group(Base, TimestampMixin):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    members: Mapped[list["GroupMember"]] = relationship(
        "GroupMember",
        back_populates="group",
        order_by="GroupMember.position",
        cascade="all, delete-orphan",
    )


class GroupMember(Base):
    """A member reference by email; the email may not belong to a registered user."""

    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "email", name="uq_group_member_email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    group: Mapped[Group] = relationship("Group", back_populates="members")


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    # id order doubles as creation order
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(50), nullable=False)


class Transaction(Base):
    """Joined to users and categories by value (username, type), never by key."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_username", "username"),
        Index("ix_transactions_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
