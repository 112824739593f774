"""
Domain errors raised by the policy engine.

Routes translate these into HTTP responses; nothing in the domain layer
catches them.
"""


class PolicyError(Exception):
    """Base class for policy engine errors."""


class PolicyValidationError(PolicyError, ValueError):
    """A malformed action, resource, subject, effect or role name."""


class PolicyNotFoundError(PolicyError, LookupError):
    """A command referenced a policy id that does not exist."""

    def __init__(self, policy_id: str):
        super().__init__(f"Policy not found: {policy_id}")
        self.policy_id = policy_id


class SystemPolicyError(PolicyError):
    """An administrator tried to change a policy seeded from a predefined role."""

    def __init__(self, policy_id: str, operation: str):
        super().__init__(f"Cannot {operation} system policy: {policy_id}")
        self.policy_id = policy_id
        self.operation = operation
