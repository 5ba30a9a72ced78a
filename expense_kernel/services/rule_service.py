"""
expense_kernel.services.rule_service -- Company approval rule sets.

Responsibility:
    Creates, lists and deletes a company's approval rules.  All rule shape
    validation happens here, once, so the evaluator can trust every rule it
    receives.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - PERCENTAGE and HYBRID rules carry a threshold in 0..100 with at most
      9 decimal places, so the stored value is the validated value.
    - SPECIFIC_APPROVER and HYBRID rules name a manager/admin of the same
      company.
    - Payload not used by a rule type is dropped rather than stored.
    - Rules are returned in ``position`` order.

Failure modes:
    - InvalidRuleConfigError listing every problem with the definition.
    - NoEligibleApproversError for a percentage rule on an empty roster.
    - CompanyNotFoundError / RuleNotFoundError on unknown ids.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import (
    APPROVER_RULE_TYPES,
    THRESHOLD_RULE_TYPES,
    ApprovalRule,
    RuleType,
)
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import (
    CompanyNotFoundError,
    InvalidRuleConfigError,
    NoEligibleApproversError,
    RuleNotFoundError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval_rule import ApprovalRuleModel
from expense_kernel.models.directory import CompanyModel
from expense_kernel.services.hierarchy_service import HierarchyService

logger = get_logger("services.rule_set")

# Scale of approval_rules.threshold_percentage; finer values would be rounded.
_THRESHOLD_QUANTUM = Decimal("0.000000001")


def _parse_threshold(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidOperation(value)
    return Decimal(str(value))


def validate_rule_definition(
    rule_type: Any,
    threshold_percentage: Any,
    specific_approver_id: UUID | None,
    roster: frozenset[UUID],
) -> list[str]:
    """Return every problem with a rule definition (empty list = valid)."""
    errors: list[str] = []

    try:
        kind = RuleType(rule_type)
    except ValueError:
        return [f"unknown rule_type {rule_type!r}"]

    if kind in THRESHOLD_RULE_TYPES:
        if threshold_percentage is None:
            errors.append(f"{kind.value} rule requires threshold_percentage")
        else:
            try:
                threshold = _parse_threshold(threshold_percentage)
            except (InvalidOperation, ValueError):
                errors.append(f"threshold_percentage {threshold_percentage!r} is not a number")
            else:
                if not threshold.is_finite() or not (0 <= threshold <= 100):
                    errors.append(
                        f"threshold_percentage {threshold_percentage} must be between 0 and 100"
                    )
                elif threshold != threshold.quantize(_THRESHOLD_QUANTUM):
                    errors.append(
                        f"threshold_percentage {threshold_percentage} has more than 9 decimal places"
                    )

    if kind in APPROVER_RULE_TYPES:
        if specific_approver_id is None:
            errors.append(f"{kind.value} rule requires specific_approver_id")
        elif specific_approver_id not in roster:
            errors.append(
                f"specific_approver_id {specific_approver_id} is not a manager or admin "
                "of this company"
            )

    return errors


class RuleSetService:
    """Maintains each company's ordered approval rule set."""

    def __init__(
        self,
        session: Session,
        hierarchy: HierarchyService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._hierarchy = hierarchy
        self._clock = clock or SystemClock()

    def create_rule(
        self,
        company_id: UUID,
        rule_type: RuleType | str,
        threshold_percentage: Decimal | int | str | None = None,
        specific_approver_id: UUID | None = None,
        is_sequential: bool = True,
    ) -> ApprovalRule:
        """Validate and append a rule to the company's rule set.

        The new rule goes after every existing rule of the company.
        """
        self._load_company_model(company_id)
        roster = self._hierarchy.approver_roster(company_id)

        errors = validate_rule_definition(
            rule_type, threshold_percentage, specific_approver_id, roster,
        )
        if errors:
            logger.warning(
                "approval_rule_rejected",
                extra={"company_id": str(company_id), "errors": errors},
            )
            raise InvalidRuleConfigError(errors)

        kind = RuleType(rule_type)
        if kind == RuleType.PERCENTAGE and not roster:
            raise NoEligibleApproversError(str(company_id))

        last_position = self._session.execute(
            select(func.max(ApprovalRuleModel.position)).where(
                ApprovalRuleModel.company_id == company_id,
            )
        ).scalar()

        model = ApprovalRuleModel(
            rule_id=uuid4(),
            company_id=company_id,
            position=(last_position or 0) + 1,
            rule_type=kind.value,
            threshold_percentage=(
                _parse_threshold(threshold_percentage)
                if kind in THRESHOLD_RULE_TYPES
                else None
            ),
            specific_approver_id=(
                specific_approver_id if kind in APPROVER_RULE_TYPES else None
            ),
            is_sequential=bool(is_sequential),
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()
        self._session.refresh(model)

        logger.info(
            "approval_rule_created",
            extra={
                "rule_id": str(model.rule_id),
                "company_id": str(company_id),
                "rule_type": model.rule_type,
                "position": model.position,
                "is_sequential": model.is_sequential,
            },
        )
        return model.to_dto()

    def rules_for(self, company_id: UUID) -> tuple[ApprovalRule, ...]:
        """Return the company's rules in evaluation order."""
        models = self._session.execute(
            select(ApprovalRuleModel)
            .where(ApprovalRuleModel.company_id == company_id)
            .order_by(ApprovalRuleModel.position)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def get_rule(self, rule_id: UUID) -> ApprovalRule:
        return self._load_rule_model(rule_id).to_dto()

    def delete_rule(self, rule_id: UUID) -> None:
        """Remove a rule.  Pending expenses are evaluated without it from now on."""
        model = self._load_rule_model(rule_id)
        self._session.delete(model)
        self._session.flush()

        logger.info(
            "approval_rule_deleted",
            extra={"rule_id": str(rule_id), "company_id": str(model.company_id)},
        )

    def _load_rule_model(self, rule_id: UUID) -> ApprovalRuleModel:
        model = self._session.execute(
            select(ApprovalRuleModel).where(ApprovalRuleModel.rule_id == rule_id)
        ).scalar_one_or_none()
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    def _load_company_model(self, company_id: UUID) -> CompanyModel:
        model = self._session.execute(
            select(CompanyModel).where(CompanyModel.company_id == company_id)
        ).scalar_one_or_none()
        if model is None:
            raise CompanyNotFoundError(str(company_id))
        return model
