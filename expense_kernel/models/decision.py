"""
Module: expense_kernel.models.decision
Responsibility: ORM persistence for approver decisions.  Append-only.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One decision per approver per expense: UNIQUE(expense_id, approver_id).
    - Ledger order: UNIQUE(expense_id, sequence).
    - Decisions are immutable: ORM listeners refuse UPDATE and DELETE.

Failure modes:
    - IntegrityError on a duplicate approver decision that slipped past the
      service check.
    - ImmutabilityViolationError on decision UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UTCDateTime, UUIDString
from expense_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from expense_kernel.domain.approval import Decision


class DecisionModel(Base):
    """Persistent approver decision. Append-only."""

    __tablename__ = "expense_decisions"

    __table_args__ = (
        CheckConstraint(
            "verdict IN ('approved', 'rejected')",
            name="ck_expense_decisions_valid_verdict",
        ),
        Index("ix_expense_decisions_expense_id", "expense_id"),
        UniqueConstraint(
            "expense_id", "approver_id",
            name="uq_expense_decisions_approver",
        ),
        UniqueConstraint(
            "expense_id", "sequence",
            name="uq_expense_decisions_sequence",
        ),
    )

    decision_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("expenses.expense_id"),
        nullable=False,
    )
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    verdict: Mapped[str] = mapped_column(String(20), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    decided_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Decision {self.decision_id} expense={self.expense_id} "
            f"#{self.sequence} {self.verdict}>"
        )

    def to_dto(self) -> Decision:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            Decision as DecisionDTO,
            Verdict,
        )

        return DecisionDTO(
            decision_id=self.decision_id,
            expense_id=self.expense_id,
            approver_id=self.approver_id,
            verdict=Verdict(self.verdict),
            sequence=self.sequence,
            comment=self.comment,
            decided_at=self.decided_at,
        )


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(DecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    """Prevent updates to decision records."""
    raise ImmutabilityViolationError(
        entity_type="Decision",
        entity_id=str(target.decision_id),
        reason="Decisions are immutable -- cannot modify",
    )


@event.listens_for(DecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    """Prevent deletion of decision records."""
    raise ImmutabilityViolationError(
        entity_type="Decision",
        entity_id=str(target.decision_id),
        reason="Decisions are immutable -- cannot delete",
    )
