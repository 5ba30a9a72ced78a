"""
expense_config -- YAML configuration for the expense workflow.

Responsibility:
    Runtime settings (database URL, SQL echo, log level) and company
    approval rule packs.  Rule packs are applied through the kernel's
    RuleSetService, never written to the database directly.

Architecture position:
    Configuration -- sits above ``expense_kernel``.  The kernel MUST NEVER
    import from ``expense_config``.
"""

from expense_config.loader import (
    RuleDefinition,
    RulePack,
    apply_rule_pack,
    load_rule_pack,
    load_yaml_file,
    parse_rule_definition,
    parse_rule_pack,
)
from expense_config.settings import (
    DEFAULT_DATABASE_URL,
    WorkflowSettings,
    bootstrap,
    load_settings,
)

__all__ = [
    "DEFAULT_DATABASE_URL",
    "RuleDefinition",
    "RulePack",
    "WorkflowSettings",
    "apply_rule_pack",
    "bootstrap",
    "load_rule_pack",
    "load_settings",
    "load_yaml_file",
    "parse_rule_definition",
    "parse_rule_pack",
]
