"""
expense_engines.approval -- Pure expense approval rule evaluator.

Responsibility:
    Given an immutable snapshot of (submitter, direct manager, approver
    roster, ordered rule set, ordered decision ledger), decide whether the
    expense is APPROVED, REJECTED or still PENDING, and who may meaningfully
    act next.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain/ types and exceptions.

Invariants enforced:
    - Eligibility: only decisions from roster members other than the
      submitter count toward thresholds.
    - Sequential gate: while a sequential rule's gate is closed the rule is
      PENDING; earlier decisions stay in the ledger and are counted once the
      direct manager approves.  A direct-manager rejection fails the rule.
      Only an eligible manager closes the gate.
    - The submitter never counts, not even as a designated approver.
    - Next approvers are always eligible approvers.
    - Fold: any FAILED rule rejects the expense; every rule SATISFIED
      approves it; otherwise PENDING.
    - Zero rules: the first eligible decision in ledger order decides.
    - Empty roster: a percentage condition never resolves.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - RuleInvariantError if a rule is missing the payload its type needs.
      Rules are validated at creation, so this signals corrupted config
      and is never turned into an outcome.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    APPROVER_RULE_TYPES,
    THRESHOLD_RULE_TYPES,
    ApprovalRule,
    EvaluationSnapshot,
    ExpenseStatus,
    RuleEvaluation,
    RuleOutcome,
    RuleType,
    Verdict,
    WorkflowEvaluation,
)
from expense_kernel.exceptions import RuleInvariantError

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class DecisionTally:
    """Verdicts by approver, derived once per evaluation.

    ``verdicts`` holds the first verdict of every approver in the ledger
    except the submitter, whose own decisions never count.
    ``approved``/``rejected`` are restricted to eligible approvers.
    """

    verdicts: dict[UUID, Verdict]
    eligible: frozenset[UUID]
    approved: frozenset[UUID]
    rejected: frozenset[UUID]

    @classmethod
    def from_snapshot(cls, snapshot: EvaluationSnapshot) -> DecisionTally:
        verdicts: dict[UUID, Verdict] = {}
        for d in snapshot.decisions:
            if d.approver_id == snapshot.submitter_id:
                continue
            verdicts.setdefault(d.approver_id, d.verdict)

        eligible = eligible_approvers(snapshot)
        return cls(
            verdicts=verdicts,
            eligible=eligible,
            approved=frozenset(
                a for a, v in verdicts.items() if a in eligible and v == Verdict.APPROVED
            ),
            rejected=frozenset(
                a for a, v in verdicts.items() if a in eligible and v == Verdict.REJECTED
            ),
        )

    def verdict_of(self, approver_id: UUID | None) -> Verdict | None:
        if approver_id is None:
            return None
        return self.verdicts.get(approver_id)

    @property
    def undecided(self) -> frozenset[UUID]:
        return self.eligible - self.verdicts.keys()


def eligible_approvers(snapshot: EvaluationSnapshot) -> frozenset[UUID]:
    """Roster members who may decide on this expense (never the submitter)."""
    return snapshot.roster - {snapshot.submitter_id}


# =========================================================================
# Workflow evaluation
# =========================================================================


def _trace_summary(evaluation: WorkflowEvaluation) -> dict[str, object]:
    return {
        "outcome": evaluation.outcome.value,
        "next_approver_count": len(evaluation.eligible_next_approvers),
    }


@traced_engine(
    "approval", "1.0",
    fingerprint_fields=("snapshot",),
    summarize=_trace_summary,
)
def evaluate_workflow(snapshot: EvaluationSnapshot) -> WorkflowEvaluation:
    """Evaluate the whole rule set against the decision ledger.

    Args:
        snapshot: Immutable inputs read in one transaction by the caller.

    Returns:
        WorkflowEvaluation with the aggregate outcome, the per-rule
        breakdown, and the approvers who may meaningfully act next
        (empty once the outcome is terminal).
    """
    tally = DecisionTally.from_snapshot(snapshot)

    if not snapshot.rules:
        return evaluate_single_approval(snapshot, tally)

    results = tuple(
        evaluate_rule(rule, snapshot.direct_manager_id, tally)
        for rule in snapshot.rules
    )
    outcome = fold_rule_outcomes(r.outcome for r in results)

    if outcome == ExpenseStatus.PENDING:
        waiting: frozenset[UUID] = frozenset().union(
            *(r.waiting_on for r in results if r.outcome == RuleOutcome.PENDING)
        )
        pending = sum(1 for r in results if r.outcome == RuleOutcome.PENDING)
        reason = f"{pending} of {len(results)} rule(s) pending"
    else:
        waiting = frozenset()
        reason = _terminal_reason(outcome, results)

    return WorkflowEvaluation(
        outcome=outcome,
        eligible_next_approvers=waiting,
        rule_results=results,
        reason=reason,
    )


def evaluate_single_approval(
    snapshot: EvaluationSnapshot,
    tally: DecisionTally | None = None,
) -> WorkflowEvaluation:
    """Fallback policy for companies with no configured rules.

    The first decision (ledger order) from an eligible approver decides the
    expense either way; later decisions never override it.
    """
    tally = tally or DecisionTally.from_snapshot(snapshot)

    for d in snapshot.decisions:
        if d.approver_id not in tally.eligible:
            continue
        outcome = (
            ExpenseStatus.APPROVED
            if d.verdict == Verdict.APPROVED
            else ExpenseStatus.REJECTED
        )
        return WorkflowEvaluation(
            outcome=outcome,
            reason=f"Single approval: {d.verdict.value} by {d.approver_id}",
        )

    return WorkflowEvaluation(
        outcome=ExpenseStatus.PENDING,
        eligible_next_approvers=tally.undecided,
        reason="Single approval: awaiting first decision",
    )


def fold_rule_outcomes(outcomes: Iterable[RuleOutcome]) -> ExpenseStatus:
    """Combine per-rule outcomes: OR over FAILED, AND over SATISFIED."""
    outcomes = tuple(outcomes)
    if any(o == RuleOutcome.FAILED for o in outcomes):
        return ExpenseStatus.REJECTED
    if all(o == RuleOutcome.SATISFIED for o in outcomes):
        return ExpenseStatus.APPROVED
    return ExpenseStatus.PENDING


def _terminal_reason(
    outcome: ExpenseStatus,
    results: tuple[RuleEvaluation, ...],
) -> str:
    if outcome == ExpenseStatus.APPROVED:
        return f"All {len(results)} rule(s) satisfied"
    failed = next(r for r in results if r.outcome == RuleOutcome.FAILED)
    return f"Rule {failed.rule.position} ({failed.rule.rule_type.value}) failed: {failed.reason}"


# =========================================================================
# Per-rule evaluation
# =========================================================================


def evaluate_rule(
    rule: ApprovalRule,
    direct_manager_id: UUID | None,
    tally: DecisionTally,
) -> RuleEvaluation:
    """Evaluate one rule, applying its sequential gate first.

    Returns:
        RuleEvaluation whose outcome is SATISFIED, FAILED or PENDING.

    Raises:
        RuleInvariantError: if the rule lacks the payload its type needs.
    """
    check_rule_invariants(rule)

    counts = {
        "approvals": len(tally.approved),
        "rejections": len(tally.rejected),
        "roster_size": len(tally.eligible),
    }

    # A manager who cannot cast an eligible decision never closes the gate.
    if rule.is_sequential and direct_manager_id in tally.eligible:
        gate = tally.verdict_of(direct_manager_id)
        if gate is None:
            return RuleEvaluation(
                rule=rule,
                outcome=RuleOutcome.PENDING,
                gate_open=False,
                waiting_on=frozenset({direct_manager_id}),
                reason="Waiting for the direct manager",
                **counts,
            )
        if gate == Verdict.REJECTED:
            return RuleEvaluation(
                rule=rule,
                outcome=RuleOutcome.FAILED,
                reason="Rejected by the direct manager",
                **counts,
            )

    outcome, waiting_on, reason = _dispatch(rule, tally)
    return RuleEvaluation(
        rule=rule,
        outcome=outcome,
        waiting_on=waiting_on if outcome == RuleOutcome.PENDING else frozenset(),
        reason=reason,
        **counts,
    )


def _dispatch(
    rule: ApprovalRule,
    tally: DecisionTally,
) -> tuple[RuleOutcome, frozenset[UUID], str]:
    """Single dispatch over the rule variant."""
    if rule.rule_type == RuleType.PERCENTAGE:
        outcome = percentage_outcome(
            rule.threshold_percentage,
            approvals=len(tally.approved),
            rejections=len(tally.rejected),
            roster_size=len(tally.eligible),
        )
        waiting = tally.undecided if outcome == RuleOutcome.PENDING else frozenset()
        return outcome, waiting, _percentage_reason(rule, tally, outcome)

    if rule.rule_type == RuleType.SPECIFIC_APPROVER:
        outcome = specific_approver_outcome(rule.specific_approver_id, tally)
        waiting = (
            frozenset({rule.specific_approver_id}) & tally.eligible
            if outcome == RuleOutcome.PENDING
            else frozenset()
        )
        return outcome, waiting, f"Specific approver {rule.specific_approver_id}: {outcome.value}"

    if rule.rule_type == RuleType.HYBRID:
        by_percentage = percentage_outcome(
            rule.threshold_percentage,
            approvals=len(tally.approved),
            rejections=len(tally.rejected),
            roster_size=len(tally.eligible),
        )
        by_approver = specific_approver_outcome(rule.specific_approver_id, tally)
        outcome = hybrid_outcome(by_percentage, by_approver)

        waiting: frozenset[UUID] = frozenset()
        if by_percentage == RuleOutcome.PENDING:
            waiting |= tally.undecided
        if by_approver == RuleOutcome.PENDING:
            waiting |= frozenset({rule.specific_approver_id}) & tally.eligible
        reason = (
            f"Hybrid: percentage {by_percentage.value}, "
            f"specific approver {by_approver.value}"
        )
        return outcome, waiting, reason

    raise RuleInvariantError(str(rule.rule_id), f"unknown rule type {rule.rule_type!r}")


def percentage_outcome(
    threshold: Decimal,
    *,
    approvals: int,
    rejections: int,
    roster_size: int,
) -> RuleOutcome:
    """Threshold check against the full roster.

    SATISFIED when ``approvals / roster_size * 100 >= threshold``.  FAILED
    once even unanimous approval from the undecided approvers could not
    reach the threshold.  A threshold of 0 is satisfied without any
    decision; an empty roster is never satisfied.
    """
    if roster_size == 0:
        return RuleOutcome.PENDING
    if threshold == 0:
        return RuleOutcome.SATISFIED

    required = threshold * roster_size
    if approvals * _HUNDRED >= required:
        return RuleOutcome.SATISFIED
    if (roster_size - rejections) * _HUNDRED < required:
        return RuleOutcome.FAILED
    return RuleOutcome.PENDING


def specific_approver_outcome(
    approver_id: UUID,
    tally: DecisionTally,
) -> RuleOutcome:
    """The designated approver's verdict decides; everyone else is ignored."""
    verdict = tally.verdict_of(approver_id)
    if verdict == Verdict.APPROVED:
        return RuleOutcome.SATISFIED
    if verdict == Verdict.REJECTED:
        return RuleOutcome.FAILED
    return RuleOutcome.PENDING


def hybrid_outcome(by_percentage: RuleOutcome, by_approver: RuleOutcome) -> RuleOutcome:
    """Either path satisfies; the rule fails only when both paths fail."""
    if RuleOutcome.SATISFIED in (by_percentage, by_approver):
        return RuleOutcome.SATISFIED
    if by_percentage == RuleOutcome.FAILED and by_approver == RuleOutcome.FAILED:
        return RuleOutcome.FAILED
    return RuleOutcome.PENDING


def _percentage_reason(
    rule: ApprovalRule,
    tally: DecisionTally,
    outcome: RuleOutcome,
) -> str:
    if not tally.eligible:
        return "No eligible approvers on the roster"
    return (
        f"{len(tally.approved)}/{len(tally.eligible)} approved, "
        f"threshold {rule.threshold_percentage.normalize():f}%: {outcome.value}"
    )


# =========================================================================
# Rule shape
# =========================================================================


def check_rule_invariants(rule: ApprovalRule) -> None:
    """Raise RuleInvariantError if the rule lacks its type's payload.

    Creation-time validation makes this unreachable for stored rules.
    """
    if not isinstance(rule.rule_type, RuleType):
        raise RuleInvariantError(str(rule.rule_id), f"unknown rule type {rule.rule_type!r}")

    if rule.rule_type in THRESHOLD_RULE_TYPES:
        threshold = rule.threshold_percentage
        if threshold is None:
            raise RuleInvariantError(str(rule.rule_id), "threshold_percentage is missing")
        if not (0 <= threshold <= _HUNDRED):
            raise RuleInvariantError(
                str(rule.rule_id), f"threshold_percentage {threshold} outside 0..100",
            )

    if rule.rule_type in APPROVER_RULE_TYPES and rule.specific_approver_id is None:
        raise RuleInvariantError(str(rule.rule_id), "specific_approver_id is missing")
