"""
PermissionPolicy aggregate.

A policy grants (ALLOW) or refuses (DENY) a subject an action pattern over a
resource pattern within one profile. Policies seeded from a predefined role
carry ``system_policy=True``.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from ulid import ULID

from app.features.policies.exceptions import PolicyValidationError
from app.features.policies.types import Action, Effect, PredefinedRole, Resource, Subject


SYSTEM_USER = "SYSTEM"


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(value, kind: type, field_name: str) -> None:
    if not isinstance(value, kind):
        raise PolicyValidationError(f"{field_name} must be a {kind.__name__}, got {value!r}")


@dataclass(eq=False)
class Policy:
    id: str
    profile_id: str
    subject: Subject
    action_pattern: Action
    resource_pattern: Resource
    effect: Effect
    description: Optional[str]
    system_policy: bool
    created_at: datetime
    created_by: str
    updated_at: datetime = field(default=None)

    def __post_init__(self):
        if not self.id:
            raise PolicyValidationError("Policy id is required")
        if not self.profile_id:
            raise PolicyValidationError("profileId is required")
        if self.subject is None:
            raise PolicyValidationError("subject is required")
        _require(self.subject, Subject, "subject")
        _require(self.action_pattern, Action, "actionPattern")
        _require(self.resource_pattern, Resource, "resourcePattern")
        _require(self.effect, Effect, "effect")
        if self.updated_at is None:
            self.updated_at = self.created_at

    # ===== Factories =====

    @classmethod
    def create(
        cls,
        profile_id: str,
        subject: Subject,
        action: Action,
        resource: Optional[Resource] = None,
        effect: Optional[Effect] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> "Policy":
        """Create an administrator-defined policy for a profile."""
        if not created_by:
            raise PolicyValidationError("createdBy is required")
        now = utcnow()
        return cls(
            id=generate_ulid(),
            profile_id=profile_id,
            subject=subject,
            action_pattern=action,
            resource_pattern=resource if resource is not None else Resource.all(),
            effect=effect if effect is not None else Effect.ALLOW,
            description=description,
            system_policy=False,
            created_at=now,
            created_by=created_by,
            updated_at=now,
        )

    @classmethod
    def system(cls, profile_id: str, role: PredefinedRole, action: Action) -> "Policy":
        """Create a policy seeded from a predefined role."""
        now = utcnow()
        return cls(
            id=generate_ulid(),
            profile_id=profile_id,
            subject=role.subject,
            action_pattern=action,
            resource_pattern=Resource.all(),
            effect=Effect.ALLOW,
            description=f"{role.description} ({role.name} default)",
            system_policy=True,
            created_at=now,
            created_by=SYSTEM_USER,
            updated_at=now,
        )

    @classmethod
    def reconstitute(
        cls,
        id: str,
        profile_id: str,
        subject: Subject,
        action_pattern: Action,
        resource_pattern: Resource,
        effect: Effect,
        description: Optional[str],
        system_policy: bool,
        created_at: datetime,
        created_by: str,
        updated_at: datetime,
    ) -> "Policy":
        """Rebuild a policy from persisted fields, timestamps included."""
        return cls(
            id=id,
            profile_id=profile_id,
            subject=subject,
            action_pattern=action_pattern,
            resource_pattern=resource_pattern,
            effect=effect,
            description=description,
            system_policy=system_policy,
            created_at=created_at,
            created_by=created_by,
            updated_at=updated_at,
        )

    # ===== Mutation =====

    def update(
        self,
        action: Optional[Action] = None,
        resource: Optional[Resource] = None,
        effect: Optional[Effect] = None,
        description: Optional[str] = None,
    ) -> None:
        """Change the mutable fields; ``None`` keeps the current value."""
        if action is not None:
            _require(action, Action, "actionPattern")
        if resource is not None:
            _require(resource, Resource, "resourcePattern")
        if effect is not None:
            _require(effect, Effect, "effect")

        if action is not None:
            self.action_pattern = action
        if resource is not None:
            self.resource_pattern = resource
        if effect is not None:
            self.effect = effect
        if description is not None:
            self.description = description
        self.updated_at = utcnow()

    # ===== Matching =====

    def matches(self, action: Union[Action, str], resource_id: str) -> bool:
        return self.action_pattern.matches(action) and self.resource_pattern.matches(resource_id)

    def matches_action(self, action: Union[Action, str]) -> bool:
        return self.action_pattern.matches(action)

    def applies_to(self, subject: Subject) -> bool:
        return self.subject == subject

    def applies_to_any(self, subjects: Iterable[Subject]) -> bool:
        return any(self.applies_to(subject) for subject in subjects)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Policy):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return (
            f"<Policy(id={self.id}, profile={self.profile_id}, subject={self.subject.to_urn()}, "
            f"action={self.action_pattern.value!r}, resource={self.resource_pattern.value!r}, "
            f"effect={self.effect.value})>"
        )


def policies_for_role(profile_id: str, role: PredefinedRole) -> list[Policy]:
    """System policies granting a predefined role its default action patterns."""
    return [Policy.system(profile_id, role, action) for action in role.action_patterns]
