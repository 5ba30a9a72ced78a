"""
Pytest fixtures for the expense workflow test suite.

Provides:
- A fresh file-backed SQLite database per test (real commits, real
  connections per thread, no DDL shared between tests)
- Kernel services bound to a per-test session
- A small organization (company, manager chain, approvers) as a factory
- Captured structured logs
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session, sessionmaker

from expense_kernel.db.engine import build_engine, create_tables, session_scope
from expense_kernel.domain.approval import UserRole
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from expense_kernel.services.decision_ledger import DecisionLedger
from expense_kernel.services.expense_service import ExpenseService
from expense_kernel.services.hierarchy_service import HierarchyService
from expense_kernel.services.rule_service import RuleSetService
from expense_kernel.services.workflow_controller import WorkflowController


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture expense_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, controller):
            controller.submit_decision(...)
            logs = captured_logs()
            assert any(r["message"] == "decision_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("expense_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """One SQLite database file per test, schema created up front."""
    eng = build_engine(f"sqlite:///{tmp_path / 'expense_test.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Per-test session.  Uncommitted work is rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


# =============================================================================
# Services bound to the per-test session
# =============================================================================


@pytest.fixture
def hierarchy(session) -> HierarchyService:
    return HierarchyService(session)


@pytest.fixture
def rule_service(session, hierarchy, deterministic_clock) -> RuleSetService:
    return RuleSetService(session, hierarchy, deterministic_clock)


@pytest.fixture
def ledger(session, hierarchy, deterministic_clock) -> DecisionLedger:
    return DecisionLedger(session, hierarchy, deterministic_clock)


@pytest.fixture
def expense_service(session, hierarchy, deterministic_clock) -> ExpenseService:
    return ExpenseService(session, hierarchy, deterministic_clock)


@pytest.fixture
def controller(session_factory, deterministic_clock) -> WorkflowController:
    return WorkflowController(session_factory, clock=deterministic_clock)


# =============================================================================
# Organization factory
# =============================================================================


@dataclass(frozen=True)
class Org:
    """
    A company with a reporting chain::

        admin (ADMIN)
          manager (MANAGER)      <- employee's direct manager
            employee (EMPLOYEE)
          approver_a, approver_b, approver_c (MANAGER)
        outsider (EMPLOYEE, no manager)

    Roster: admin, manager, approver_a, approver_b, approver_c (5 members).
    """

    company_id: UUID
    admin: UUID
    manager: UUID
    employee: UUID
    approver_a: UUID
    approver_b: UUID
    approver_c: UUID
    outsider: UUID

    @property
    def roster(self) -> frozenset[UUID]:
        return frozenset({
            self.admin, self.manager, self.approver_a, self.approver_b, self.approver_c,
        })


def build_org(hierarchy: HierarchyService, name: str = "Acme Corp") -> Org:
    slug = name.lower().replace(" ", "")
    company = hierarchy.register_company(name, default_currency="USD")
    cid = company.company_id

    def user(label: str, role: UserRole, manager_id: UUID | None = None) -> UUID:
        return hierarchy.register_user(
            cid, label.title(), f"{label}@{slug}.example", role=role, manager_id=manager_id,
        ).user_id

    admin = user("admin", UserRole.ADMIN)
    manager = user("manager", UserRole.MANAGER, manager_id=admin)
    return Org(
        company_id=cid,
        admin=admin,
        manager=manager,
        employee=user("employee", UserRole.EMPLOYEE, manager_id=manager),
        approver_a=user("approver_a", UserRole.MANAGER, manager_id=admin),
        approver_b=user("approver_b", UserRole.MANAGER, manager_id=admin),
        approver_c=user("approver_c", UserRole.MANAGER, manager_id=admin),
        outsider=user("outsider", UserRole.EMPLOYEE),
    )


@pytest.fixture
def org(hierarchy) -> Org:
    """Organization created in the per-test session (uncommitted)."""
    return build_org(hierarchy)


@pytest.fixture
def committed_org(session_factory) -> Org:
    """Organization committed to the database, visible to every session."""
    with session_scope(session_factory) as sess:
        return build_org(HierarchyService(sess))


@pytest.fixture
def workflow_setup(session_factory, deterministic_clock, committed_org):
    """
    Factory committing rules and expenses for controller tests.

    Usage::

        expense_id = workflow_setup(rules=[{"rule_type": "percentage",
                                            "threshold_percentage": 60}])
    """

    def _setup(rules=(), submitter: UUID | None = None, amount="125.00") -> UUID:
        with session_scope(session_factory) as sess:
            hier = HierarchyService(sess)
            if rules:
                svc = RuleSetService(sess, hier, deterministic_clock)
                if not svc.rules_for(committed_org.company_id):
                    for rule in rules:
                        svc.create_rule(committed_org.company_id, **rule)
            expense = ExpenseService(sess, hier, deterministic_clock).submit_expense(
                committed_org.company_id,
                submitter or committed_org.employee,
                amount,
                category="travel",
                description="Client visit",
            )
            return expense.expense_id

    return _setup
