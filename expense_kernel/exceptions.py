"""
Typed Exception Hierarchy for the Expense Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval errors are caller logic errors (a duplicate vote, a vote from
someone outside the company, a vote after the expense closed).  Callers must
be able to tell them apart without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        controller.submit_decision(expense_id, approver_id, Verdict.APPROVED)
    except Exception as e:
        if "already" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way (what this module enables):
    try:
        controller.submit_decision(expense_id, approver_id, Verdict.APPROVED)
    except ExpenseAlreadyFinalizedError as e:
        api_response(code=e.code, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ExpenseKernelError:

    ExpenseKernelError (base)
    |
    +-- RuleConfigError
    |   +-- InvalidRuleConfigError
    |   +-- NoEligibleApproversError
    |   +-- RuleNotFoundError
    |   +-- RuleInvariantError
    |
    +-- DecisionError
    |   +-- DuplicateDecisionError
    |   +-- IneligibleApproverError
    |
    +-- ExpenseError
    |   +-- ExpenseNotFoundError
    |   +-- ExpenseAlreadyFinalizedError
    |   +-- InvalidExpenseTransitionError
    |   +-- InvalidExpenseError
    |
    +-- DirectoryError
    |   +-- UserNotFoundError
    |   +-- CompanyNotFoundError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Rule config     | INVALID_RULE_CONFIG         | Malformed rule at creation time
                | NO_ELIGIBLE_APPROVERS       | Percentage rule, empty approver roster
                | RULE_NOT_FOUND              | Rule ID doesn't exist
                | RULE_INVARIANT_VIOLATION    | Malformed rule reached the evaluator
----------------|-----------------------------|-----------------------------------------
Decision        | DUPLICATE_DECISION          | Approver already decided this expense
                | INELIGIBLE_APPROVER         | Approver not a manager/admin of company
----------------|-----------------------------|-----------------------------------------
Expense         | EXPENSE_NOT_FOUND           | Expense ID doesn't exist
                | EXPENSE_ALREADY_FINALIZED   | Decision after APPROVED/REJECTED
                | INVALID_EXPENSE_TRANSITION  | Illegal status change
                | INVALID_EXPENSE             | Bad amount/currency on submission
----------------|-----------------------------|-----------------------------------------
Directory       | USER_NOT_FOUND              | User ID doesn't exist
                | COMPANY_NOT_FOUND           | Company ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a recorded decision

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NONE OF THESE ARE TRANSIENT.  Do not retry.  A duplicate or ineligible
   decision will fail the same way every time.

2. RuleInvariantError means a rule bypassed creation-time validation.
   Report it; never fall back to a default outcome.

===============================================================================
"""


class ExpenseKernelError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EXPENSE_KERNEL_ERROR"


# Rule configuration exceptions


class RuleConfigError(ExpenseKernelError):
    """Base exception for approval rule configuration errors."""

    code: str = "RULE_CONFIG_ERROR"


class InvalidRuleConfigError(RuleConfigError):
    """
    Approval rule is malformed.

    Raised once, at rule creation.  The evaluator never sees a rule that
    failed this check.
    """

    code: str = "INVALID_RULE_CONFIG"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid approval rule: {'; '.join(self.errors)}")


class NoEligibleApproversError(RuleConfigError):
    """A percentage rule was requested for a company with no managers/admins."""

    code: str = "NO_ELIGIBLE_APPROVERS"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(
            f"Company {company_id} has no eligible approvers for a percentage rule"
        )


class RuleNotFoundError(RuleConfigError):
    """Approval rule with given ID was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


class RuleInvariantError(RuleConfigError):
    """
    A malformed rule reached the evaluator.

    This is an internal invariant failure, not a user error: rule shape is
    validated at creation time.
    """

    code: str = "RULE_INVARIANT_VIOLATION"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Rule {rule_id} violates its invariants: {reason}")


# Decision exceptions


class DecisionError(ExpenseKernelError):
    """Base exception for decision recording errors."""

    code: str = "DECISION_ERROR"


class DuplicateDecisionError(DecisionError):
    """
    The approver already has a decision recorded for this expense.

    The first decision by an approver is final and cannot be amended.
    """

    code: str = "DUPLICATE_DECISION"

    def __init__(self, expense_id: str, approver_id: str):
        self.expense_id = expense_id
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} already decided on expense {expense_id}"
        )


class IneligibleApproverError(DecisionError):
    """The approver may not decide on this expense."""

    code: str = "INELIGIBLE_APPROVER"

    def __init__(self, expense_id: str, approver_id: str, reason: str):
        self.expense_id = expense_id
        self.approver_id = approver_id
        self.reason = reason
        super().__init__(
            f"Approver {approver_id} is not eligible for expense {expense_id}: {reason}"
        )


# Expense exceptions


class ExpenseError(ExpenseKernelError):
    """Base exception for expense errors."""

    code: str = "EXPENSE_ERROR"


class ExpenseNotFoundError(ExpenseError):
    """Expense with given ID was not found."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


class ExpenseAlreadyFinalizedError(ExpenseError):
    """A decision arrived after the expense reached a terminal status."""

    code: str = "EXPENSE_ALREADY_FINALIZED"

    def __init__(self, expense_id: str, status: str):
        self.expense_id = expense_id
        self.status = status
        super().__init__(f"Expense {expense_id} is already {status}")


class InvalidExpenseTransitionError(ExpenseError):
    """Status change not permitted by the expense state machine."""

    code: str = "INVALID_EXPENSE_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid expense transition: {from_status} -> {to_status}"
        )


class InvalidExpenseError(ExpenseError):
    """Expense submission failed validation."""

    code: str = "INVALID_EXPENSE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid expense: {reason}")


# Directory exceptions


class DirectoryError(ExpenseKernelError):
    """Base exception for company/user lookup errors."""

    code: str = "DIRECTORY_ERROR"


class UserNotFoundError(DirectoryError):
    """User with given ID was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class CompanyNotFoundError(DirectoryError):
    """Company with given ID was not found."""

    code: str = "COMPANY_NOT_FOUND"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company not found: {company_id}")


# Immutability exceptions


class ImmutabilityError(ExpenseKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
