"""
Module: expense_kernel.models.approval_rule
Responsibility: ORM persistence for company approval rules.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rule type limited to percentage/specific_approver/hybrid.
    - Threshold, when present, lies in 0..100.
    - Each rule type carries the payload it requires (check constraints
      mirror the service-level validation in RuleSetService).
    - ``position`` orders a company's rule set.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalRule


class ApprovalRuleModel(Base):
    """Persistent approval rule."""

    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint(
            "rule_type IN ('percentage', 'specific_approver', 'hybrid')",
            name="ck_approval_rules_valid_type",
        ),
        CheckConstraint(
            "threshold_percentage IS NULL "
            "OR (threshold_percentage >= 0 AND threshold_percentage <= 100)",
            name="ck_approval_rules_threshold_range",
        ),
        CheckConstraint(
            "rule_type = 'specific_approver' OR threshold_percentage IS NOT NULL",
            name="ck_approval_rules_threshold_required",
        ),
        CheckConstraint(
            "rule_type = 'percentage' OR specific_approver_id IS NOT NULL",
            name="ck_approval_rules_approver_required",
        ),
        UniqueConstraint(
            "company_id", "position",
            name="uq_approval_rules_company_position",
        ),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.company_id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    threshold_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    specific_approver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    is_sequential: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRule {self.rule_id} company={self.company_id} "
            f"#{self.position} {self.rule_type}>"
        )

    def to_dto(self) -> ApprovalRule:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            ApprovalRule as ApprovalRuleDTO,
            RuleType,
        )

        return ApprovalRuleDTO(
            rule_id=self.rule_id,
            company_id=self.company_id,
            rule_type=RuleType(self.rule_type),
            position=self.position,
            threshold_percentage=self.threshold_percentage,
            specific_approver_id=self.specific_approver_id,
            is_sequential=self.is_sequential,
        )
