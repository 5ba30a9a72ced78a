"""
expense_kernel.services.decision_ledger -- Append-only decision ledger.

Responsibility:
    Records approver decisions against an expense and returns the ledger in
    order.  Decides nothing about the expense outcome; that is the
    evaluator's job.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - One decision per approver per expense (service check + DB constraint).
      The first decision is final; it is never amended or replaced.
    - Only managers/admins of the expense's company, other than the
      submitter, may decide.
    - Ledger order is fixed by a per-expense ``sequence``.
    - Decisions cast while a sequential gate is closed are still recorded;
      the evaluator decides when they start to count.

Failure modes:
    - DuplicateDecisionError if the approver already decided.
    - IneligibleApproverError if the approver may not decide.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import Decision, Expense, Verdict
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import DuplicateDecisionError, IneligibleApproverError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.decision import DecisionModel
from expense_kernel.services.hierarchy_service import HierarchyService

logger = get_logger("services.decision_ledger")


class DecisionLedger:
    """SQLAlchemy-backed DecisionStore."""

    def __init__(
        self,
        session: Session,
        hierarchy: HierarchyService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._hierarchy = hierarchy
        self._clock = clock or SystemClock()

    def record(
        self,
        expense: Expense,
        approver_id: UUID,
        verdict: Verdict,
        comment: str = "",
    ) -> Decision:
        """Append one decision to the expense's ledger."""
        existing = self._session.execute(
            select(DecisionModel.decision_id).where(
                DecisionModel.expense_id == expense.expense_id,
                DecisionModel.approver_id == approver_id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateDecisionError(str(expense.expense_id), str(approver_id))

        self._check_eligibility(expense, approver_id)

        last_sequence = self._session.execute(
            select(func.max(DecisionModel.sequence)).where(
                DecisionModel.expense_id == expense.expense_id,
            )
        ).scalar()

        model = DecisionModel(
            decision_id=uuid4(),
            expense_id=expense.expense_id,
            approver_id=approver_id,
            verdict=Verdict(verdict).value,
            sequence=(last_sequence or 0) + 1,
            comment=comment,
            decided_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "decision_recorded",
            extra={
                "decision_id": str(model.decision_id),
                "expense_id": str(expense.expense_id),
                "approver_id": str(approver_id),
                "verdict": model.verdict,
                "sequence": model.sequence,
            },
        )
        return model.to_dto()

    def decisions_for(self, expense_id: UUID) -> tuple[Decision, ...]:
        """Return the expense's decisions in ledger order."""
        models = self._session.execute(
            select(DecisionModel)
            .where(DecisionModel.expense_id == expense_id)
            .order_by(DecisionModel.sequence)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def count_for(self, expense_id: UUID) -> int:
        return self._session.execute(
            select(func.count()).select_from(DecisionModel).where(
                DecisionModel.expense_id == expense_id,
            )
        ).scalar_one()

    def _check_eligibility(self, expense: Expense, approver_id: UUID) -> None:
        if approver_id == expense.submitter_id:
            raise IneligibleApproverError(
                str(expense.expense_id), str(approver_id),
                "submitters cannot decide on their own expense",
            )

        approver = self._hierarchy.find_user(approver_id)
        if approver is None:
            raise IneligibleApproverError(
                str(expense.expense_id), str(approver_id), "unknown user",
            )
        if approver.company_id != expense.company_id:
            raise IneligibleApproverError(
                str(expense.expense_id), str(approver_id),
                "approver belongs to another company",
            )
        if not approver.is_approver:
            raise IneligibleApproverError(
                str(expense.expense_id), str(approver_id),
                f"role {approver.role.value} cannot approve expenses",
            )
