"""
expense_kernel.services.hierarchy_service -- Company directory and hierarchy.

Responsibility:
    Registers companies and users, maintains direct-manager links, and
    answers the two hierarchy questions the workflow asks: who is this
    user's direct manager, and who are the company's approvers.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A missing or dangling manager link resolves to "no direct manager".
    - The approver roster is exactly the managers and admins of a company.
    - A manager link, when assigned, points at a user of the same company.

Failure modes:
    - CompanyNotFoundError / UserNotFoundError on unknown ids.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import APPROVER_ROLES, Company, User, UserRole
from expense_kernel.exceptions import CompanyNotFoundError, UserNotFoundError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.directory import CompanyModel, UserModel

logger = get_logger("services.hierarchy")

_APPROVER_ROLE_VALUES = tuple(sorted(r.value for r in APPROVER_ROLES))


class HierarchyService:
    """SQLAlchemy-backed HierarchyResolver plus directory maintenance."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # HierarchyResolver
    # ------------------------------------------------------------------

    def manager_of(self, user_id: UUID) -> UUID | None:
        """Return the user's direct manager, or None.

        None when the user is unknown, has no manager link, or the link
        references a user that does not exist.
        """
        user = self._find_user_model(user_id)
        if user is None or user.manager_id is None:
            return None

        manager = self._find_user_model(user.manager_id)
        if manager is None:
            logger.warning(
                "dangling_manager_link",
                extra={"user_id": str(user_id), "manager_id": str(user.manager_id)},
            )
            return None
        return manager.user_id

    def approver_roster(self, company_id: UUID) -> frozenset[UUID]:
        """Return the managers and admins of a company."""
        rows = self._session.execute(
            select(UserModel.user_id).where(
                UserModel.company_id == company_id,
                UserModel.role.in_(_APPROVER_ROLE_VALUES),
            )
        ).scalars().all()
        return frozenset(rows)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_user(self, user_id: UUID) -> User | None:
        model = self._find_user_model(user_id)
        return model.to_dto() if model is not None else None

    def find_user_by_email(self, company_id: UUID, email: str) -> User | None:
        model = self._session.execute(
            select(UserModel).where(
                UserModel.company_id == company_id,
                UserModel.email == email,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_user(self, user_id: UUID) -> User:
        return self._load_user_model(user_id).to_dto()

    def get_company(self, company_id: UUID) -> Company:
        return self._load_company_model(company_id).to_dto()

    # ------------------------------------------------------------------
    # Directory maintenance
    # ------------------------------------------------------------------

    def register_company(
        self,
        name: str,
        default_currency: str = "USD",
        company_id: UUID | None = None,
    ) -> Company:
        model = CompanyModel(
            company_id=company_id or uuid4(),
            name=name,
            default_currency=default_currency.upper(),
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "company_registered",
            extra={"company_id": str(model.company_id), "company_name": name},
        )
        return model.to_dto()

    def register_user(
        self,
        company_id: UUID,
        full_name: str,
        email: str,
        role: UserRole | str = UserRole.EMPLOYEE,
        manager_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> User:
        """Add a user to a company, optionally with a direct manager."""
        self._load_company_model(company_id)
        if manager_id is not None:
            self._check_manager(company_id, manager_id)

        model = UserModel(
            user_id=user_id or uuid4(),
            company_id=company_id,
            full_name=full_name,
            email=email,
            role=UserRole(role).value,
            manager_id=manager_id,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "user_registered",
            extra={
                "user_id": str(model.user_id),
                "company_id": str(company_id),
                "role": model.role,
            },
        )
        return model.to_dto()

    def assign_manager(self, user_id: UUID, manager_id: UUID | None) -> User:
        """Set or clear a user's direct manager."""
        model = self._load_user_model(user_id)
        if manager_id is not None:
            self._check_manager(model.company_id, manager_id)

        model.manager_id = manager_id
        self._session.flush()
        return model.to_dto()

    def change_role(self, user_id: UUID, role: UserRole | str) -> User:
        model = self._load_user_model(user_id)
        model.role = UserRole(role).value
        self._session.flush()

        logger.info(
            "user_role_changed",
            extra={"user_id": str(user_id), "role": model.role},
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_manager(self, company_id: UUID, manager_id: UUID) -> None:
        manager = self._load_user_model(manager_id)
        if manager.company_id != company_id:
            raise UserNotFoundError(str(manager_id))

    def _find_user_model(self, user_id: UUID) -> UserModel | None:
        return self._session.execute(
            select(UserModel).where(UserModel.user_id == user_id)
        ).scalar_one_or_none()

    def _load_user_model(self, user_id: UUID) -> UserModel:
        model = self._find_user_model(user_id)
        if model is None:
            raise UserNotFoundError(str(user_id))
        return model

    def _load_company_model(self, company_id: UUID) -> CompanyModel:
        model = self._session.execute(
            select(CompanyModel).where(CompanyModel.company_id == company_id)
        ).scalar_one_or_none()
        if model is None:
            raise CompanyNotFoundError(str(company_id))
        return model
