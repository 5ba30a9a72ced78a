"""
Approval domain types (``expense_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the expense approval workflow.  Defines the expense
lifecycle state machine, approval rule data, decision records, evaluation
snapshots/results, and the boundary protocols the workflow consumes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``EXPENSE_TRANSITIONS`` defines the only valid
  status transitions.  Terminal states have no outgoing edges.
* Rule polymorphism is a tagged variant: ``ApprovalRule.rule_type`` plus the
  payload fields that type requires.  No subclassing.
* Decisions are immutable once recorded; ``sequence`` fixes ledger order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


# =========================================================================
# Expense Status Lifecycle
# =========================================================================


class ExpenseStatus(str, Enum):
    """Expense lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


EXPENSE_TRANSITIONS: dict[ExpenseStatus, frozenset[ExpenseStatus]] = {
    ExpenseStatus.PENDING: frozenset({
        ExpenseStatus.APPROVED,
        ExpenseStatus.REJECTED,
    }),
    ExpenseStatus.APPROVED: frozenset(),
    ExpenseStatus.REJECTED: frozenset(),
}

TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})


class Verdict(str, Enum):
    """What an individual approver can decide."""

    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Directory Types
# =========================================================================


class UserRole(str, Enum):
    """Company roles.  Managers and admins may approve."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


APPROVER_ROLES: frozenset[UserRole] = frozenset({UserRole.MANAGER, UserRole.ADMIN})


@dataclass(frozen=True)
class Company:
    company_id: UUID
    name: str
    default_currency: str = "USD"


@dataclass(frozen=True)
class User:
    user_id: UUID
    company_id: UUID
    full_name: str
    email: str
    role: UserRole = UserRole.EMPLOYEE
    manager_id: UUID | None = None

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES


# =========================================================================
# Rule Types
# =========================================================================


class RuleType(str, Enum):
    """Approval rule variants."""

    PERCENTAGE = "percentage"
    SPECIFIC_APPROVER = "specific_approver"
    HYBRID = "hybrid"


THRESHOLD_RULE_TYPES: frozenset[RuleType] = frozenset({
    RuleType.PERCENTAGE,
    RuleType.HYBRID,
})

APPROVER_RULE_TYPES: frozenset[RuleType] = frozenset({
    RuleType.SPECIFIC_APPROVER,
    RuleType.HYBRID,
})


@dataclass(frozen=True)
class ApprovalRule:
    """A single company approval rule.

    ``threshold_percentage`` is set for PERCENTAGE/HYBRID rules and
    ``specific_approver_id`` for SPECIFIC_APPROVER/HYBRID rules.  Shape is
    validated when the rule is created (see ``RuleSetService``), so holders of
    an ``ApprovalRule`` may assume it is well-formed.
    """

    rule_id: UUID
    company_id: UUID
    rule_type: RuleType
    position: int = 0
    threshold_percentage: Decimal | None = None
    specific_approver_id: UUID | None = None
    is_sequential: bool = True


class RuleOutcome(str, Enum):
    """Three-valued result of evaluating one rule."""

    SATISFIED = "satisfied"
    FAILED = "failed"
    PENDING = "pending"


# =========================================================================
# Expense and Decision Records
# =========================================================================


@dataclass(frozen=True)
class Expense:
    """Immutable snapshot of an expense claim."""

    expense_id: UUID
    company_id: UUID
    submitter_id: UUID
    amount: Decimal
    currency: str
    status: ExpenseStatus = ExpenseStatus.PENDING
    category: str = ""
    description: str = ""
    expense_date: date | None = None
    original_amount: Decimal | None = None
    original_currency: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES


@dataclass(frozen=True)
class Decision:
    """Record of a single approver's verdict on one expense. Immutable."""

    decision_id: UUID
    expense_id: UUID
    approver_id: UUID
    verdict: Verdict
    sequence: int
    comment: str = ""
    decided_at: datetime | None = None


# =========================================================================
# Evaluation Snapshot and Results
# =========================================================================


@dataclass(frozen=True)
class EvaluationSnapshot:
    """Everything the evaluator needs, read once per evaluation.

    ``direct_manager_id`` is already resolved through the hierarchy; ``None``
    means no sequential gate applies.  ``decisions`` are in ledger order.
    """

    submitter_id: UUID
    roster: frozenset[UUID]
    rules: tuple[ApprovalRule, ...] = ()
    decisions: tuple[Decision, ...] = ()
    direct_manager_id: UUID | None = None


@dataclass(frozen=True)
class RuleEvaluation:
    """Outcome of one rule, with the counts that produced it.

    ``waiting_on`` lists the approvers whose decision could still move this
    rule; it is empty once the rule resolves.
    """

    rule: ApprovalRule
    outcome: RuleOutcome
    gate_open: bool = True
    approvals: int = 0
    rejections: int = 0
    roster_size: int = 0
    waiting_on: frozenset[UUID] = frozenset()
    reason: str = ""


@dataclass(frozen=True)
class WorkflowEvaluation:
    """Aggregate outcome across the rule set."""

    outcome: ExpenseStatus
    eligible_next_approvers: frozenset[UUID] = frozenset()
    rule_results: tuple[RuleEvaluation, ...] = ()
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.outcome in TERMINAL_EXPENSE_STATUSES


@dataclass(frozen=True)
class DecisionResult:
    """Result of ``WorkflowController.submit_decision``."""

    expense_id: UUID
    status: ExpenseStatus
    decision: Decision
    evaluation: WorkflowEvaluation

    @property
    def finalized(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES


@dataclass(frozen=True)
class WorkflowState:
    """Result of ``WorkflowController.get_workflow_state``."""

    expense_id: UUID
    status: ExpenseStatus
    eligible_next_approvers: frozenset[UUID] = frozenset()
    decisions: tuple[Decision, ...] = field(default=())
    evaluation: WorkflowEvaluation | None = None


# =========================================================================
# Boundary Protocols
# =========================================================================


class HierarchyResolver(Protocol):
    """Organizational hierarchy lookups consumed by the workflow."""

    def manager_of(self, user_id: UUID) -> UUID | None:
        """Return the user's direct manager, or None."""
        ...

    def approver_roster(self, company_id: UUID) -> frozenset[UUID]:
        """Return the managers and admins of a company."""
        ...


class RuleSource(Protocol):
    """Source of a company's ordered approval rules."""

    def rules_for(self, company_id: UUID) -> tuple[ApprovalRule, ...]:
        ...


class DecisionStore(Protocol):
    """Append-only decision ledger."""

    def decisions_for(self, expense_id: UUID) -> tuple[Decision, ...]:
        ...

    def record(
        self,
        expense: Expense,
        approver_id: UUID,
        verdict: Verdict,
        comment: str = "",
    ) -> Decision:
        ...
