"""
Expense Kernel - approval workflow core

Decides the outcome of expense claims from:
- Company approval rules (percentage, specific approver, hybrid)
- Sequential gating through the submitter's direct manager
- An append-only ledger of approver decisions
- Per-expense serialized status transitions
"""

__version__ = "0.1.0"
