"""ORM models for the expense kernel."""

from expense_kernel.models.approval_rule import ApprovalRuleModel
from expense_kernel.models.decision import DecisionModel
from expense_kernel.models.directory import CompanyModel, UserModel
from expense_kernel.models.expense import ExpenseModel

__all__ = [
    "ApprovalRuleModel",
    "CompanyModel",
    "DecisionModel",
    "ExpenseModel",
    "UserModel",
]
