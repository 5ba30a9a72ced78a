"""
Module: expense_kernel.models.directory
Responsibility: ORM persistence for companies and their users.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Role values limited to employee/manager/admin (check constraint).
    - ``manager_id`` is a soft reference: a dangling link is allowed and
      resolves to "no direct manager" in the hierarchy resolver.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import Company, User


class CompanyModel(Base):
    """Persistent company record."""

    __tablename__ = "companies"

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    default_currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD",
    )

    def __repr__(self) -> str:
        return f"<Company {self.company_id} {self.name}>"

    def to_dto(self) -> Company:
        from expense_kernel.domain.approval import Company as CompanyDTO

        return CompanyDTO(
            company_id=self.company_id,
            name=self.name,
            default_currency=self.default_currency,
        )


class UserModel(Base):
    """Persistent user record with role and direct-manager link."""

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('employee', 'manager', 'admin')",
            name="ck_users_valid_role",
        ),
        # Roster lookups: managers/admins by company
        Index("ix_users_company_role", "company_id", "role"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.company_id"),
        nullable=False,
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee")
    manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.user_id} {self.email} role={self.role}>"

    def to_dto(self) -> User:
        from expense_kernel.domain.approval import User as UserDTO, UserRole

        return UserDTO(
            user_id=self.user_id,
            company_id=self.company_id,
            full_name=self.full_name,
            email=self.email,
            role=UserRole(self.role),
            manager_id=self.manager_id,
        )
