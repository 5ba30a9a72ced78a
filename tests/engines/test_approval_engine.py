"""
Tests for the pure expense approval evaluator.

Tests cover:
- evaluate_single_approval: zero-rule fallback, first eligible decision wins
- percentage_outcome: thresholds against the full roster, early failure
- specific approver and hybrid rules
- sequential gating and retroactive counting
- fold across the rule set and eligible next approvers
- rule invariants and engine tracing
"""

import dataclasses
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_engines.approval import (
    DecisionTally,
    eligible_approvers,
    evaluate_workflow,
    fold_rule_outcomes,
    hybrid_outcome,
    percentage_outcome,
)
from expense_engines.tracer import compute_input_fingerprint
from expense_kernel.domain.approval import (
    ApprovalRule,
    Decision,
    EvaluationSnapshot,
    ExpenseStatus,
    RuleOutcome,
    RuleType,
    Verdict,
)
from expense_kernel.exceptions import RuleInvariantError


# =========================================================================
# Factory helpers
# =========================================================================


SUBMITTER = uuid4()
MANAGER = uuid4()
A, B, C, D = uuid4(), uuid4(), uuid4(), uuid4()
ROSTER = frozenset({MANAGER, A, B, C, D})
EXPENSE_ID = uuid4()


def make_rule(
    rule_type: RuleType = RuleType.PERCENTAGE,
    threshold: str | None = "60",
    approver=None,
    is_sequential: bool = False,
    position: int = 1,
) -> ApprovalRule:
    return ApprovalRule(
        rule_id=uuid4(),
        company_id=uuid4(),
        rule_type=rule_type,
        position=position,
        threshold_percentage=Decimal(threshold) if threshold is not None else None,
        specific_approver_id=approver,
        is_sequential=is_sequential,
    )


def make_decisions(*entries) -> tuple[Decision, ...]:
    """entries: (approver_id, Verdict) pairs in ledger order."""
    return tuple(
        Decision(
            decision_id=uuid4(),
            expense_id=EXPENSE_ID,
            approver_id=approver,
            verdict=verdict,
            sequence=i,
        )
        for i, (approver, verdict) in enumerate(entries, start=1)
    )


def make_snapshot(
    rules=(),
    decisions=(),
    roster=ROSTER,
    direct_manager=None,
    submitter=SUBMITTER,
) -> EvaluationSnapshot:
    return EvaluationSnapshot(
        submitter_id=submitter,
        roster=roster,
        rules=tuple(rules),
        decisions=tuple(decisions),
        direct_manager_id=direct_manager,
    )


def evaluate(**kwargs):
    return evaluate_workflow(snapshot=make_snapshot(**kwargs))


APPROVE = Verdict.APPROVED
REJECT = Verdict.REJECTED


# =========================================================================
# 1. Zero-rule fallback
# =========================================================================


class TestSingleApprovalFallback:

    def test_no_decisions_is_pending_and_everyone_may_act(self):
        result = evaluate()

        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == ROSTER

    def test_first_approval_decides(self):
        result = evaluate(decisions=make_decisions((B, APPROVE)))

        assert result.outcome == ExpenseStatus.APPROVED
        assert result.eligible_next_approvers == frozenset()

    def test_first_rejection_decides(self):
        result = evaluate(decisions=make_decisions((C, REJECT)))

        assert result.outcome == ExpenseStatus.REJECTED

    def test_later_decisions_never_override_the_first(self):
        result = evaluate(decisions=make_decisions((A, REJECT), (B, APPROVE), (C, APPROVE)))

        assert result.outcome == ExpenseStatus.REJECTED

    def test_decisions_from_outside_the_roster_are_skipped(self):
        stranger = uuid4()
        result = evaluate(decisions=make_decisions((stranger, APPROVE), (A, REJECT)))

        assert result.outcome == ExpenseStatus.REJECTED

    def test_undecided_approvers_listed_while_pending(self):
        stranger = uuid4()
        result = evaluate(decisions=make_decisions((stranger, APPROVE)))

        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == ROSTER


# =========================================================================
# 2. Percentage rules
# =========================================================================


class TestPercentageRule:
    """Threshold 60 against a roster of 5."""

    rule = make_rule(threshold="60")

    def test_three_of_five_approves(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.APPROVED

    def test_two_of_five_stays_pending(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, APPROVE), (B, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset({MANAGER, C, D})

    def test_two_approvals_one_rejection_still_reachable(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, REJECT)),
        )
        assert result.outcome == ExpenseStatus.PENDING

    def test_two_rejections_still_reachable(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, REJECT), (B, REJECT)),
        )
        assert result.outcome == ExpenseStatus.PENDING

    def test_three_rejections_make_threshold_unreachable(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, REJECT), (B, REJECT), (C, REJECT)),
        )
        assert result.outcome == ExpenseStatus.REJECTED
        assert result.eligible_next_approvers == frozenset()

    def test_rule_breakdown_carries_counts(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, APPROVE), (B, REJECT)),
        )
        (breakdown,) = result.rule_results
        assert breakdown.outcome == RuleOutcome.PENDING
        assert breakdown.approvals == 1
        assert breakdown.rejections == 1
        assert breakdown.roster_size == 5

    def test_threshold_zero_is_satisfied_immediately(self):
        result = evaluate(rules=[make_rule(threshold="0")])
        assert result.outcome == ExpenseStatus.APPROVED

    def test_threshold_hundred_fails_on_first_rejection(self):
        result = evaluate(
            rules=[make_rule(threshold="100")],
            decisions=make_decisions((A, APPROVE), (B, REJECT)),
        )
        assert result.outcome == ExpenseStatus.REJECTED

    def test_fractional_threshold_rounds_nothing(self):
        # 33.34% of 3 needs 1.0002 approvals, so one approval is not enough.
        roster = frozenset({A, B, C})
        one = evaluate(
            rules=[make_rule(threshold="33.34")],
            roster=roster,
            decisions=make_decisions((A, APPROVE)),
        )
        two = evaluate(
            rules=[make_rule(threshold="33.34")],
            roster=roster,
            decisions=make_decisions((A, APPROVE), (B, APPROVE)),
        )
        assert one.outcome == ExpenseStatus.PENDING
        assert two.outcome == ExpenseStatus.APPROVED

    def test_empty_roster_never_approves(self):
        result = evaluate(rules=[make_rule(threshold="0")], roster=frozenset())

        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset()

    def test_decisions_from_outside_the_roster_do_not_count(self):
        former = uuid4()
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((former, APPROVE), (A, APPROVE), (B, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.PENDING


class TestPercentageOutcome:

    @pytest.mark.parametrize(
        "threshold,approvals,rejections,roster,expected",
        [
            ("60", 3, 0, 5, RuleOutcome.SATISFIED),
            ("60", 2, 0, 5, RuleOutcome.PENDING),
            ("60", 0, 3, 5, RuleOutcome.FAILED),
            ("50", 1, 1, 2, RuleOutcome.SATISFIED),
            ("100", 0, 0, 1, RuleOutcome.PENDING),
            ("0", 0, 5, 5, RuleOutcome.SATISFIED),
            ("0", 0, 0, 0, RuleOutcome.PENDING),
            ("75", 1, 2, 4, RuleOutcome.FAILED),
        ],
    )
    def test_table(self, threshold, approvals, rejections, roster, expected):
        outcome = percentage_outcome(
            Decimal(threshold),
            approvals=approvals,
            rejections=rejections,
            roster_size=roster,
        )
        assert outcome == expected


# =========================================================================
# 3. Specific approver and hybrid rules
# =========================================================================


class TestSpecificApproverRule:

    rule = make_rule(RuleType.SPECIFIC_APPROVER, threshold=None, approver=D)

    def test_other_approvals_are_ignored(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE), (MANAGER, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset({D})

    def test_designated_approval_decides_instantly(self):
        result = evaluate(rules=[self.rule], decisions=make_decisions((D, APPROVE)))
        assert result.outcome == ExpenseStatus.APPROVED

    def test_designated_rejection_decides_instantly(self):
        result = evaluate(
            rules=[self.rule],
            decisions=make_decisions((A, APPROVE), (D, REJECT)),
        )
        assert result.outcome == ExpenseStatus.REJECTED


class TestHybridRule:
    """Threshold 50, designated approver X, roster of 4 (X + 3 others)."""

    X = uuid4()
    roster = frozenset({X, A, B, C})
    rule = make_rule(RuleType.HYBRID, threshold="50", approver=X)

    def run(self, *entries):
        return evaluate(rules=[self.rule], roster=self.roster, decisions=make_decisions(*entries))

    def test_two_of_the_others_satisfy(self):
        assert self.run((A, APPROVE), (B, APPROVE)).outcome == ExpenseStatus.APPROVED

    def test_designated_approver_alone_satisfies(self):
        assert self.run((self.X, APPROVE)).outcome == ExpenseStatus.APPROVED

    def test_designated_rejection_leaves_percentage_path_open(self):
        result = self.run((self.X, REJECT))

        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset({A, B, C})

    def test_percentage_path_satisfies_despite_designated_rejection(self):
        result = self.run((self.X, REJECT), (A, APPROVE), (B, APPROVE))
        assert result.outcome == ExpenseStatus.APPROVED

    def test_fails_only_when_both_paths_fail(self):
        result = self.run((self.X, REJECT), (A, REJECT), (B, REJECT))
        assert result.outcome == ExpenseStatus.REJECTED

    def test_percentage_failure_alone_is_not_enough(self):
        result = self.run((A, REJECT), (B, REJECT), (C, REJECT))

        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset({self.X})

    @pytest.mark.parametrize(
        "by_percentage,by_approver,expected",
        [
            (RuleOutcome.SATISFIED, RuleOutcome.FAILED, RuleOutcome.SATISFIED),
            (RuleOutcome.FAILED, RuleOutcome.SATISFIED, RuleOutcome.SATISFIED),
            (RuleOutcome.FAILED, RuleOutcome.FAILED, RuleOutcome.FAILED),
            (RuleOutcome.FAILED, RuleOutcome.PENDING, RuleOutcome.PENDING),
            (RuleOutcome.PENDING, RuleOutcome.PENDING, RuleOutcome.PENDING),
        ],
    )
    def test_combination_table(self, by_percentage, by_approver, expected):
        assert hybrid_outcome(by_percentage, by_approver) == expected


# =========================================================================
# 4. Sequential gate
# =========================================================================


class TestSequentialGate:

    rule = make_rule(threshold="60", is_sequential=True)

    def test_closed_gate_waits_on_the_manager_only(self):
        result = evaluate(
            rules=[self.rule],
            direct_manager=MANAGER,
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE)),
        )
        (breakdown,) = result.rule_results

        assert result.outcome == ExpenseStatus.PENDING
        assert breakdown.gate_open is False
        assert result.eligible_next_approvers == frozenset({MANAGER})

    def test_earlier_decisions_count_once_the_gate_opens(self):
        result = evaluate(
            rules=[self.rule],
            direct_manager=MANAGER,
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (MANAGER, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.APPROVED

    def test_manager_rejection_after_two_approvals_rejects(self):
        result = evaluate(
            rules=[self.rule],
            direct_manager=MANAGER,
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (MANAGER, REJECT)),
        )
        assert result.outcome == ExpenseStatus.REJECTED
        assert "direct manager" in result.reason

    def test_no_direct_manager_means_no_gate(self):
        result = evaluate(
            rules=[self.rule],
            direct_manager=None,
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.APPROVED

    def test_non_sequential_rule_ignores_the_manager(self):
        result = evaluate(
            rules=[make_rule(threshold="60", is_sequential=False)],
            direct_manager=MANAGER,
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.APPROVED

    def test_gate_applies_per_rule(self):
        gated = make_rule(threshold="20", is_sequential=True, position=1)
        open_rule = make_rule(
            RuleType.SPECIFIC_APPROVER, threshold=None, approver=D, position=2,
        )
        result = evaluate(
            rules=[gated, open_rule],
            direct_manager=MANAGER,
            decisions=make_decisions((D, APPROVE)),
        )
        gated_result, open_result = result.rule_results

        assert gated_result.outcome == RuleOutcome.PENDING
        assert open_result.outcome == RuleOutcome.SATISFIED
        assert result.eligible_next_approvers == frozenset({MANAGER})


# =========================================================================
# 5. Fold and eligibility
# =========================================================================


class TestFold:

    def test_any_failure_rejects(self):
        assert fold_rule_outcomes(
            [RuleOutcome.SATISFIED, RuleOutcome.PENDING, RuleOutcome.FAILED]
        ) == ExpenseStatus.REJECTED

    def test_all_satisfied_approves(self):
        assert fold_rule_outcomes(
            [RuleOutcome.SATISFIED, RuleOutcome.SATISFIED]
        ) == ExpenseStatus.APPROVED

    def test_otherwise_pending(self):
        assert fold_rule_outcomes(
            [RuleOutcome.SATISFIED, RuleOutcome.PENDING]
        ) == ExpenseStatus.PENDING

    def test_failed_rule_rejects_while_another_is_pending(self):
        percentage = make_rule(threshold="60", position=1)
        specific = make_rule(RuleType.SPECIFIC_APPROVER, threshold=None, approver=D, position=2)
        result = evaluate(
            rules=[percentage, specific],
            decisions=make_decisions((D, REJECT)),
        )
        assert result.outcome == ExpenseStatus.REJECTED

    def test_next_approvers_union_pending_rules(self):
        percentage = make_rule(threshold="60", position=1)
        specific = make_rule(RuleType.SPECIFIC_APPROVER, threshold=None, approver=D, position=2)
        result = evaluate(
            rules=[percentage, specific],
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset({D})


class TestEligibility:

    def test_submitter_on_the_roster_is_not_eligible(self):
        snapshot = make_snapshot(submitter=A)
        assert eligible_approvers(snapshot) == ROSTER - {A}

    def test_submitter_self_approval_never_counts(self):
        result = evaluate(
            submitter=A,
            rules=[make_rule(threshold="50")],
            decisions=make_decisions((A, APPROVE), (B, APPROVE)),
        )
        # 1 of 4 eligible approvers.
        assert result.outcome == ExpenseStatus.PENDING
        assert result.rule_results[0].roster_size == 4

    def test_manager_off_the_roster_does_not_gate(self):
        off_roster_manager = uuid4()
        result = evaluate(
            rules=[make_rule(threshold="60", is_sequential=True)],
            direct_manager=off_roster_manager,
            decisions=make_decisions((A, APPROVE), (B, APPROVE), (C, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.APPROVED

    def test_designated_approver_submitting_cannot_self_approve(self):
        result = evaluate(
            submitter=D,
            rules=[make_rule(RuleType.SPECIFIC_APPROVER, threshold=None, approver=D)],
            decisions=make_decisions((D, APPROVE)),
        )
        assert result.outcome == ExpenseStatus.PENDING
        assert result.eligible_next_approvers == frozenset()

    def test_first_verdict_per_approver_wins(self):
        tally = DecisionTally.from_snapshot(
            make_snapshot(decisions=make_decisions((A, APPROVE), (A, REJECT)))
        )
        assert tally.verdict_of(A) == APPROVE
        assert tally.rejected == frozenset()


# =========================================================================
# 6. Rule invariants and tracing
# =========================================================================


class TestRuleInvariants:

    def test_percentage_without_threshold_raises(self):
        with pytest.raises(RuleInvariantError) as exc_info:
            evaluate(rules=[make_rule(threshold=None)])
        assert exc_info.value.code == "RULE_INVARIANT_VIOLATION"

    def test_specific_without_approver_raises(self):
        with pytest.raises(RuleInvariantError):
            evaluate(rules=[make_rule(RuleType.SPECIFIC_APPROVER, threshold=None)])

    def test_threshold_out_of_range_raises(self):
        with pytest.raises(RuleInvariantError):
            evaluate(rules=[make_rule(threshold="150")])


class TestTracing:

    def test_evaluation_emits_engine_trace(self, captured_logs):
        evaluate(rules=[make_rule()])

        traces = [r for r in captured_logs() if r["message"] == "EXPENSE_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "approval"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_identical_snapshots_share_a_fingerprint(self, captured_logs):
        snapshot = make_snapshot(rules=[make_rule()])
        evaluate_workflow(snapshot=snapshot)
        evaluate_workflow(snapshot=snapshot)

        fps = [
            r["input_fingerprint"]
            for r in captured_logs()
            if r["message"] == "EXPENSE_ENGINE_TRACE"
        ]
        assert len(fps) == 2
        assert fps[0] == fps[1]

    def test_trace_records_the_outcome(self, captured_logs):
        evaluate_workflow(snapshot=make_snapshot(
            rules=[make_rule()],
            decisions=make_decisions((A, Verdict.APPROVED)),
        ))

        (trace,) = [r for r in captured_logs() if r["message"] == "EXPENSE_ENGINE_TRACE"]
        assert trace["outcome"] == "pending"
        assert trace["next_approver_count"] == 4

    def test_positional_and_keyword_calls_share_a_fingerprint(self, captured_logs):
        snapshot = make_snapshot(rules=[make_rule()])
        evaluate_workflow(snapshot)
        evaluate_workflow(snapshot=snapshot)

        fps = {
            r["input_fingerprint"]
            for r in captured_logs()
            if r["message"] == "EXPENSE_ENGINE_TRACE"
        }
        assert len(fps) == 1

    def test_fingerprint_ignores_roster_order_and_decimal_scale(self):
        rule = make_rule(threshold="60")
        same_rule = dataclasses.replace(rule, threshold_percentage=Decimal("60.00"))

        first = compute_input_fingerprint(
            ("snapshot",), {"snapshot": make_snapshot(rules=[rule], roster=frozenset({A, B, C}))},
        )
        second = compute_input_fingerprint(
            ("snapshot",), {"snapshot": make_snapshot(rules=[same_rule], roster=frozenset({C, B, A}))},
        )

        assert first == second

    def test_different_ledgers_differ(self):
        rule = make_rule()
        empty = make_snapshot(rules=[rule])
        decided = make_snapshot(rules=[rule], decisions=make_decisions((A, Verdict.APPROVED)))

        assert compute_input_fingerprint(("snapshot",), {"snapshot": empty}) != \
            compute_input_fingerprint(("snapshot",), {"snapshot": decided})
