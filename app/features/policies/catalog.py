"""
Catalog of concrete action ids known to the platform.

Wildcard patterns such as ``*.view`` or ``payments.*`` are expanded against
this catalog when listing the actions a caller may perform. Deployments add
their own ids through the ACTION_CATALOG setting.
"""
from typing import Iterable

from app.core import config
from app.features.policies.exceptions import PolicyValidationError
from app.features.policies.types import Action


DEFAULT_ACTIONS = (
    # Payments
    "payments.view",
    "payments.create",
    "payments.update",
    "payments.delete",
    "payments.approve",
    # Accounts
    "accounts.view",
    "accounts.update",
    # Approvals
    "approvals.view",
    "approvals.approve",
    # Reports
    "reports.view",
    "reports.create",
    # Users
    "users.view",
    "users.create",
    "users.update",
    "users.delete",
    # Security administration
    "security.users.manage",
    "security.users.lock",
    "security.roles.assign",
    "security.policies.view",
    "security.policies.manage",
)


def build_catalog(extra: Iterable[str] = ()) -> tuple[str, ...]:
    """Default actions plus ``extra``, validated, de-duplicated, order preserved."""
    entries: dict[str, None] = {}
    for value in (*DEFAULT_ACTIONS, *extra):
        action = Action(value)
        if action.is_wildcard:
            raise PolicyValidationError(f"Catalog entries must be concrete action ids: {value}")
        entries[action.value] = None
    return tuple(entries)


ACTION_CATALOG: tuple[str, ...] = build_catalog(config.ACTION_CATALOG)
