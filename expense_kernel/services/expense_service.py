"""
expense_kernel.services.expense_service -- Expense submission and lookup.

Responsibility:
    Creates PENDING expenses and reads them back.  Currency conversion and
    receipt scanning happen before this service is called; it stores the
    converted amount alongside the amount as originally claimed.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Failure modes:
    - InvalidExpenseError on a non-positive amount, a malformed currency
      code, or a submitter from another company.
    - UserNotFoundError / CompanyNotFoundError on unknown ids.
    - ExpenseNotFoundError on lookup of an unknown expense.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import Expense, ExpenseStatus
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import ExpenseNotFoundError, InvalidExpenseError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.expense import ExpenseModel
from expense_kernel.services.hierarchy_service import HierarchyService

logger = get_logger("services.expense")


def _normalize_currency(code: str) -> str:
    code = (code or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise InvalidExpenseError(f"currency {code!r} is not an ISO 4217 code")
    return code


class ExpenseService:
    """Submits and reads expense claims."""

    def __init__(
        self,
        session: Session,
        hierarchy: HierarchyService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._hierarchy = hierarchy
        self._clock = clock or SystemClock()

    def submit_expense(
        self,
        company_id: UUID,
        submitter_id: UUID,
        amount: Decimal,
        currency: str | None = None,
        category: str = "",
        description: str = "",
        expense_date: date | None = None,
        original_amount: Decimal | None = None,
        original_currency: str | None = None,
    ) -> Expense:
        """Create a PENDING expense.

        ``currency`` defaults to the company's default currency.  When the
        claim was made in another currency, pass it as ``original_amount`` /
        ``original_currency``.
        """
        company = self._hierarchy.get_company(company_id)
        submitter = self._hierarchy.get_user(submitter_id)
        if submitter.company_id != company_id:
            raise InvalidExpenseError(
                f"submitter {submitter_id} does not belong to company {company_id}"
            )

        amount = Decimal(str(amount))
        if amount <= 0:
            raise InvalidExpenseError(f"amount {amount} must be positive")

        model = ExpenseModel(
            expense_id=uuid4(),
            company_id=company_id,
            submitter_id=submitter_id,
            amount=amount,
            currency=_normalize_currency(currency or company.default_currency),
            original_amount=(
                Decimal(str(original_amount)) if original_amount is not None else None
            ),
            original_currency=(
                _normalize_currency(original_currency) if original_currency else None
            ),
            category=category,
            description=description,
            expense_date=expense_date,
            status=ExpenseStatus.PENDING.value,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "expense_submitted",
            extra={
                "expense_id": str(model.expense_id),
                "company_id": str(company_id),
                "submitter_id": str(submitter_id),
                "amount": str(amount),
                "currency": model.currency,
            },
        )
        return model.to_dto()

    def get_expense(self, expense_id: UUID) -> Expense:
        model = self._session.execute(
            select(ExpenseModel).where(ExpenseModel.expense_id == expense_id)
        ).scalar_one_or_none()
        if model is None:
            raise ExpenseNotFoundError(str(expense_id))
        return model.to_dto()

    def list_for_submitter(self, submitter_id: UUID) -> list[Expense]:
        """An employee's own expenses, newest first."""
        models = self._session.execute(
            select(ExpenseModel)
            .where(ExpenseModel.submitter_id == submitter_id)
            .order_by(ExpenseModel.created_at.desc())
        ).scalars().all()
        return [m.to_dto() for m in models]
