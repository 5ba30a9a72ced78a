"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from expense_kernel.domain.approval import (
    APPROVER_ROLES,
    EXPENSE_TRANSITIONS,
    TERMINAL_EXPENSE_STATUSES,
    ApprovalRule,
    Company,
    Decision,
    DecisionResult,
    DecisionStore,
    EvaluationSnapshot,
    Expense,
    ExpenseStatus,
    HierarchyResolver,
    RuleEvaluation,
    RuleOutcome,
    RuleSource,
    RuleType,
    User,
    UserRole,
    Verdict,
    WorkflowEvaluation,
    WorkflowState,
)
from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "APPROVER_ROLES",
    "EXPENSE_TRANSITIONS",
    "TERMINAL_EXPENSE_STATUSES",
    "ApprovalRule",
    "Clock",
    "Company",
    "Decision",
    "DecisionResult",
    "DecisionStore",
    "DeterministicClock",
    "EvaluationSnapshot",
    "Expense",
    "ExpenseStatus",
    "HierarchyResolver",
    "RuleEvaluation",
    "RuleOutcome",
    "RuleSource",
    "RuleType",
    "SystemClock",
    "User",
    "UserRole",
    "Verdict",
    "WorkflowEvaluation",
    "WorkflowState",
]
