"""
expense_kernel.services.workflow_controller -- Expense approval state machine.

Responsibility:
    Accepts approver decisions, appends them to the ledger, re-runs the pure
    approval evaluator over a fresh snapshot and applies the resulting
    expense status transition.  Also answers "what is the state of this
    expense and who can act next".

Architecture position:
    Kernel > Services.  Orchestrates HierarchyService, RuleSetService and
    DecisionLedger; delegates all outcome logic to
    ``expense_engines.approval.evaluate_workflow``.

Invariants enforced:
    - PENDING -> APPROVED | REJECTED, exactly once.  Terminal states accept
      no further decisions.
    - Per-expense serialization: one decision is fully applied (ledger
      write + evaluation + transition, one transaction) before the next
      decision on the same expense starts.  Controllers share the
      process-wide lock registry unless given their own.
    - Each decision first claims the expense row with a guarded UPDATE, so
      a decision racing a finalization from another process or controller
      is refused and rolled back.
    - Every evaluation reads its snapshot inside the transaction that wrote
      the decision, so an acknowledged decision is always counted.
    - A failed submission rolls back; the ledger is unchanged.

Failure modes:
    - ExpenseNotFoundError on an unknown expense.
    - ExpenseAlreadyFinalizedError on a decision after a terminal state.
    - DuplicateDecisionError / IneligibleApproverError from the ledger.
    - RuleInvariantError from the evaluator (never masked).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from expense_engines.approval import evaluate_workflow
from expense_kernel.db.engine import session_scope
from expense_kernel.domain.approval import (
    EXPENSE_TRANSITIONS,
    TERMINAL_EXPENSE_STATUSES,
    DecisionResult,
    EvaluationSnapshot,
    Expense,
    ExpenseStatus,
    Verdict,
    WorkflowEvaluation,
    WorkflowState,
)
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import (
    ExpenseAlreadyFinalizedError,
    ExpenseKernelError,
    ExpenseNotFoundError,
    InvalidExpenseTransitionError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.models.expense import ExpenseModel
from expense_kernel.services.decision_ledger import DecisionLedger
from expense_kernel.services.hierarchy_service import HierarchyService
from expense_kernel.services.locks import PROCESS_LOCKS, ExpenseLockRegistry
from expense_kernel.services.rule_service import RuleSetService

logger = get_logger("services.workflow_controller")


class _Unit:
    """The services bound to one session."""

    def __init__(self, session: Session, clock: Clock) -> None:
        self.session = session
        self.hierarchy = HierarchyService(session)
        self.rules = RuleSetService(session, self.hierarchy, clock)
        self.ledger = DecisionLedger(session, self.hierarchy, clock)


class WorkflowController:
    """Runs the approval workflow for expenses.

    Each public call opens its own session from ``session_factory``, so one
    controller may be shared by many threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        locks: ExpenseLockRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._locks = locks if locks is not None else PROCESS_LOCKS

    # ------------------------------------------------------------------
    # SubmitDecision
    # ------------------------------------------------------------------

    def submit_decision(
        self,
        expense_id: UUID,
        approver_id: UUID,
        verdict: Verdict | str,
        comment: str = "",
    ) -> DecisionResult:
        """Record one approver's verdict and apply the resulting status.

        Returns:
            DecisionResult with the expense status after this decision.
        """
        verdict = Verdict(verdict)

        with LogContext.bind(expense_id=str(expense_id), approver_id=str(approver_id)):
            try:
                with self._locks.hold(expense_id):
                    return self._apply_decision(expense_id, approver_id, verdict, comment)
            except ExpenseKernelError as exc:
                logger.warning(
                    "decision_refused",
                    extra={"error_code": exc.code, "verdict": verdict.value},
                )
                raise

    def _apply_decision(
        self,
        expense_id: UUID,
        approver_id: UUID,
        verdict: Verdict,
        comment: str,
    ) -> DecisionResult:
        with session_scope(self._session_factory) as session:
            unit = _Unit(session, self._clock)
            self._claim_pending(session, expense_id)
            model = self._load_expense_model(session, expense_id)
            current = _require_pending(model)

            expense = model.to_dto()
            decision = unit.ledger.record(expense, approver_id, verdict, comment)
            evaluation = self._evaluate(unit, expense)

            if evaluation.is_terminal:
                self._transition(session, model, current, evaluation)

            return DecisionResult(
                expense_id=expense_id,
                status=ExpenseStatus(model.status),
                decision=decision,
                evaluation=evaluation,
            )

    # ------------------------------------------------------------------
    # GetWorkflowState
    # ------------------------------------------------------------------

    def get_workflow_state(self, expense_id: UUID) -> WorkflowState:
        """Current status and the approvers who may meaningfully act next.

        Finalized expenses report no next approvers and carry no fresh
        evaluation: their outcome was fixed when they were finalized.
        """
        with session_scope(self._session_factory) as session:
            unit = _Unit(session, self._clock)
            expense = self._load_expense_model(session, expense_id).to_dto()
            decisions = unit.ledger.decisions_for(expense_id)

            if expense.is_terminal:
                return WorkflowState(
                    expense_id=expense_id,
                    status=expense.status,
                    decisions=decisions,
                )

            evaluation = self._evaluate(unit, expense)
            return WorkflowState(
                expense_id=expense_id,
                status=expense.status,
                eligible_next_approvers=evaluation.eligible_next_approvers,
                decisions=decisions,
                evaluation=evaluation,
            )

    def list_pending_for_approver(self, approver_id: UUID) -> list[Expense]:
        """PENDING expenses on which this approver may meaningfully act now."""
        with session_scope(self._session_factory) as session:
            unit = _Unit(session, self._clock)
            approver = unit.hierarchy.find_user(approver_id)
            if approver is None or not approver.is_approver:
                return []

            models = session.execute(
                select(ExpenseModel)
                .where(
                    ExpenseModel.company_id == approver.company_id,
                    ExpenseModel.status == ExpenseStatus.PENDING.value,
                )
                .order_by(ExpenseModel.created_at)
            ).scalars().all()

            pending: list[Expense] = []
            for model in models:
                expense = model.to_dto()
                evaluation = self._evaluate(unit, expense)
                if approver_id in evaluation.eligible_next_approvers:
                    pending.append(expense)
            return pending

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _evaluate(self, unit: _Unit, expense: Expense) -> WorkflowEvaluation:
        snapshot = self._take_snapshot(unit, expense)
        return evaluate_workflow(snapshot=snapshot)

    def _take_snapshot(self, unit: _Unit, expense: Expense) -> EvaluationSnapshot:
        roster = unit.hierarchy.approver_roster(expense.company_id)

        # A manager outside the roster could never cast an eligible decision,
        # so gating on them would block the expense forever.
        manager_id = unit.hierarchy.manager_of(expense.submitter_id)
        if manager_id is not None and manager_id not in roster:
            logger.info(
                "direct_manager_not_approver",
                extra={"submitter_id": str(expense.submitter_id), "manager_id": str(manager_id)},
            )
            manager_id = None

        return EvaluationSnapshot(
            submitter_id=expense.submitter_id,
            direct_manager_id=manager_id,
            roster=roster,
            rules=unit.rules.rules_for(expense.company_id),
            decisions=unit.ledger.decisions_for(expense.expense_id),
        )

    def _transition(
        self,
        session: Session,
        model: ExpenseModel,
        current: ExpenseStatus,
        evaluation: WorkflowEvaluation,
    ) -> None:
        new_status = evaluation.outcome
        if new_status not in EXPENSE_TRANSITIONS.get(current, frozenset()):
            raise InvalidExpenseTransitionError(current.value, new_status.value)

        model.status = new_status.value
        model.resolved_at = self._clock.now()
        session.flush()

        logger.info(
            "expense_finalized",
            extra={
                "expense_id": str(model.expense_id),
                "status": new_status.value,
                "reason": evaluation.reason,
            },
        )

    @staticmethod
    def _claim_pending(session: Session, expense_id: UUID) -> None:
        """Take the expense row's write lock if it is still PENDING.

        Reads after this point in the transaction see every committed
        decision and status change.  SQLite has no row locks, so this is a
        guarded no-op UPDATE rather than SELECT ... FOR UPDATE.
        """
        session.execute(
            update(ExpenseModel)
            .where(
                ExpenseModel.expense_id == expense_id,
                ExpenseModel.status == ExpenseStatus.PENDING.value,
            )
            .values(status=ExpenseModel.status)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _load_expense_model(session: Session, expense_id: UUID) -> ExpenseModel:
        stmt = select(ExpenseModel).where(ExpenseModel.expense_id == expense_id)
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ExpenseNotFoundError(str(expense_id))
        return model


def _require_pending(model: ExpenseModel) -> ExpenseStatus:
    status = ExpenseStatus(model.status)
    if status in TERMINAL_EXPENSE_STATUSES:
        raise ExpenseAlreadyFinalizedError(str(model.expense_id), status.value)
    return status
