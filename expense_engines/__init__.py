"""
Module: expense_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for the
    kernel services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain and expense_kernel/exceptions.
    MUST NOT import expense_kernel services, models or db.

Invariants enforced:
    - Purity: engines never read the clock or a database.  Everything an
      evaluation needs arrives in an ``EvaluationSnapshot``.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every workflow evaluation is traced via ``@traced_engine``, emitting an
    EXPENSE_ENGINE_TRACE log record with an input fingerprint.
"""

from expense_engines.approval import (
    DecisionTally,
    check_rule_invariants,
    eligible_approvers,
    evaluate_rule,
    evaluate_single_approval,
    evaluate_workflow,
    fold_rule_outcomes,
    hybrid_outcome,
    percentage_outcome,
    specific_approver_outcome,
)
from expense_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "DecisionTally",
    "check_rule_invariants",
    "compute_input_fingerprint",
    "eligible_approvers",
    "evaluate_rule",
    "evaluate_single_approval",
    "evaluate_workflow",
    "fold_rule_outcomes",
    "hybrid_outcome",
    "percentage_outcome",
    "specific_approver_outcome",
    "traced_engine",
]
