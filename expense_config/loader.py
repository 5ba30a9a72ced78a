"""
Rule pack loader (``expense_config.loader``).

Responsibility
--------------
Loads YAML rule packs (a company's approval rule set as a file) and parses
them into frozen dataclasses, then applies them through the
``RuleSetService`` so every rule passes the same creation-time validation as
a rule created by hand.

A rule pack looks like::

    company_id: 7b1e9a52-...        # optional when applying to a known company
    rules:
      - type: percentage
        threshold_percentage: 60
        is_sequential: true
      - type: specific_approver
        approver_email: cfo@acme.example
      - type: hybrid
        threshold_percentage: 50
        specific_approver_id: 0c4d...
        is_sequential: false

Architecture position
---------------------
**Config layer**.  Parsing has no kernel dependency beyond domain enums;
``apply_rule_pack`` takes the kernel services it writes through.

Invariants enforced
-------------------
* Rule order in the file is rule order in the company's rule set.
* Parsing checks structure only.  Rule semantics (threshold range, approver
  eligibility) are validated by ``RuleSetService.create_rule``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``type`` / ``rules``  -> ``KeyError`` propagates.
* Malformed values (non-list rules, bad UUID)  -> ``ValueError``.
* Unknown approver email  -> ``UserNotFoundError`` at apply time.
* Invalid rule  -> ``InvalidRuleConfigError`` at apply time; rules created
  before it stay in the caller's transaction, which the caller rolls back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import UUID

import yaml

from expense_kernel.domain.approval import ApprovalRule
from expense_kernel.exceptions import UserNotFoundError

if TYPE_CHECKING:
    from expense_kernel.services.hierarchy_service import HierarchyService
    from expense_kernel.services.rule_service import RuleSetService

_logger = logging.getLogger("expense_kernel.config.loader")


@dataclass(frozen=True)
class RuleDefinition:
    """One rule as written in a pack (not yet validated)."""

    rule_type: str
    threshold_percentage: str | None = None
    specific_approver_id: UUID | None = None
    approver_email: str | None = None
    is_sequential: bool = True


@dataclass(frozen=True)
class RulePack:
    """An ordered rule set for one company."""

    rules: tuple[RuleDefinition, ...]
    company_id: UUID | None = None
    source: str | None = None


def load_yaml_file(path: Path | str) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def _parse_uuid(value: Any, field: str) -> UUID | None:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValueError(f"{field} {value!r} is not a valid UUID") from None


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field} must be true or false, got {value!r}")


def parse_rule_definition(data: dict[str, Any]) -> RuleDefinition:
    """
    Parse a ``RuleDefinition`` from a dict.

    ``rule_type`` is accepted as an alias of ``type``.  The threshold is kept
    as a string so no precision is lost before it becomes a Decimal.

    Raises:
        KeyError: if neither ``type`` nor ``rule_type`` is present.
        ValueError: on a malformed UUID or boolean.
    """
    rule_type = data["type"] if "type" in data else data["rule_type"]

    threshold = data.get("threshold_percentage")
    approver_email = data.get("approver_email")

    return RuleDefinition(
        rule_type=str(rule_type).strip().lower(),
        threshold_percentage=str(threshold) if threshold is not None else None,
        specific_approver_id=_parse_uuid(
            data.get("specific_approver_id"), "specific_approver_id",
        ),
        approver_email=str(approver_email).strip() if approver_email else None,
        is_sequential=_parse_bool(data.get("is_sequential", True), "is_sequential"),
    )


def parse_rule_pack(data: dict[str, Any], source: str | None = None) -> RulePack:
    """Parse a ``RulePack`` from the top-level mapping of a pack file."""
    raw_rules = data["rules"]
    if raw_rules is None:
        raw_rules = []
    if not isinstance(raw_rules, list):
        raise ValueError("rules must be a list")

    return RulePack(
        rules=tuple(parse_rule_definition(r) for r in raw_rules),
        company_id=_parse_uuid(data.get("company_id"), "company_id"),
        source=source,
    )


def load_rule_pack(path: Path | str) -> RulePack:
    """Load and parse a rule pack file."""
    pack = parse_rule_pack(load_yaml_file(path), source=str(path))
    _logger.debug(
        "rule_pack_loaded",
        extra={"source": str(path), "rule_count": len(pack.rules)},
    )
    return pack


def apply_rule_pack(
    rule_service: RuleSetService,
    pack: RulePack,
    company_id: UUID | None = None,
    hierarchy: HierarchyService | None = None,
    replace: bool = False,
) -> tuple[ApprovalRule, ...]:
    """
    Create every rule of ``pack`` for a company, in file order.

    Args:
        rule_service: Service the rules are created through.
        pack: Parsed rule pack.
        company_id: Target company; defaults to ``pack.company_id``.
        hierarchy: Needed only when the pack references approvers by email.
        replace: Delete the company's existing rules first.

    Returns:
        The created rules.

    Raises:
        ValueError: if no company id is known, or an email reference is
            used without a hierarchy.
    """
    target = company_id or pack.company_id
    if target is None:
        raise ValueError("rule pack has no company_id and none was given")

    if replace:
        for existing in rule_service.rules_for(target):
            rule_service.delete_rule(existing.rule_id)

    created = []
    for definition in pack.rules:
        approver_id = definition.specific_approver_id
        if approver_id is None and definition.approver_email:
            approver_id = _resolve_email(hierarchy, target, definition.approver_email)

        created.append(
            rule_service.create_rule(
                target,
                definition.rule_type,
                threshold_percentage=definition.threshold_percentage,
                specific_approver_id=approver_id,
                is_sequential=definition.is_sequential,
            )
        )

    _logger.info(
        "rule_pack_applied",
        extra={
            "company_id": str(target),
            "source": pack.source,
            "rule_count": len(created),
            "replaced": replace,
        },
    )
    return tuple(created)


def _resolve_email(
    hierarchy: HierarchyService | None,
    company_id: UUID,
    email: str,
) -> UUID:
    if hierarchy is None:
        raise ValueError(f"approver_email {email!r} needs a hierarchy to resolve")
    user = hierarchy.find_user_by_email(company_id, email)
    if user is None:
        raise UserNotFoundError(email)
    return user.user_id
