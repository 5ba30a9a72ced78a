"""Services for the expense kernel (write side)."""

from expense_kernel.services.decision_ledger import DecisionLedger
from expense_kernel.services.expense_service import ExpenseService
from expense_kernel.services.hierarchy_service import HierarchyService
from expense_kernel.services.locks import ExpenseLockRegistry
from expense_kernel.services.rule_service import RuleSetService, validate_rule_definition
from expense_kernel.services.workflow_controller import WorkflowController

__all__ = [
    "DecisionLedger",
    "ExpenseLockRegistry",
    "ExpenseService",
    "HierarchyService",
    "RuleSetService",
    "WorkflowController",
    "validate_rule_definition",
]
