from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

MEMBER_STATUS_PENDING = "pending"
MEMBER_STATUS_ACTIVE = "active"
MEMBER_STATUS_SUSPENDED = "suspended"

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ROLE_CHIEF_ARCHITECT = "chief_architect"
ROLE_ARCHITECT_LEAD = "architect_lead"

VALID_ROLES: list[str] = [ROLE_ADMIN, ROLE_MEMBER, ROLE_CHIEF_ARCHITECT, ROLE_ARCHITECT_LEAD]


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    # Only "active" members may queue jobs or submit prompts
    member_status: Mapped[str] = mapped_column(String(20), default=MEMBER_STATUS_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    role: Mapped[str] = mapped_column(String(30))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
