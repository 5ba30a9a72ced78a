"""
Module: expense_kernel.models.expense
Responsibility: ORM persistence for expense claims.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status values limited to pending/approved/rejected (check constraint).
    - Finalized expenses are immutable: an ORM listener refuses any change
      to an expense whose status was already approved or rejected.  The
      service layer enforces the transition rules themselves.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UTCDateTime, UUIDString
from expense_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from expense_kernel.domain.approval import Expense

_TERMINAL_STATUS_VALUES = frozenset({"approved", "rejected"})


class ExpenseModel(Base):
    """Persistent expense claim.

    Contract:
        ``status`` moves from pending to approved or rejected exactly once.
        Only the WorkflowController performs that transition.
    """

    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_expenses_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_expenses_positive_amount"),
        # Pending queue per company
        Index("ix_expenses_company_status", "company_id", "status", "created_at"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.company_id"),
        nullable=False,
    )
    submitter_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.user_id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    original_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    expense_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Expense {self.expense_id} {self.amount} {self.currency} "
            f"status={self.status}>"
        )

    def to_dto(self) -> Expense:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            Expense as ExpenseDTO,
            ExpenseStatus,
        )

        return ExpenseDTO(
            expense_id=self.expense_id,
            company_id=self.company_id,
            submitter_id=self.submitter_id,
            amount=self.amount,
            currency=self.currency,
            status=ExpenseStatus(self.status),
            category=self.category,
            description=self.description,
            expense_date=self.expense_date,
            original_amount=self.original_amount,
            original_currency=self.original_currency,
            created_at=self.created_at,
            resolved_at=self.resolved_at,
        )


# =============================================================================
# ORM-Level Immutability for Finalized Expenses
# =============================================================================


@event.listens_for(ExpenseModel, "before_update")
def prevent_finalized_expense_update(mapper, connection, target):
    """Refuse changes to an expense that was already approved or rejected."""
    state = inspect(target)
    status_history = state.attrs.status.history
    previous = status_history.deleted[0] if status_history.deleted else target.status
    if previous not in _TERMINAL_STATUS_VALUES:
        return

    changed = [attr.key for attr in state.attrs if attr.history.has_changes()]
    if changed:
        raise ImmutabilityViolationError(
            entity_type="Expense",
            entity_id=str(target.expense_id),
            reason=f"Expense is {previous}; cannot modify {', '.join(changed)}",
        )
