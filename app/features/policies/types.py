"""
Value types for permission policies.

- Action: hierarchical dot-segmented permission id with wildcard matching
- Resource: comma-separated list of resource globs, OR-matched
- Subject: who a policy targets (user, group or role), serialized as a URN
- Effect: ALLOW or DENY
- PredefinedRole: static catalog of system roles and their default action patterns
"""
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Iterable, Union

from app.features.policies.exceptions import PolicyValidationError


# ============================================================================
# Action
# ============================================================================

ACTION_GRAMMAR = re.compile(r"(\*|[a-z][a-z0-9-]*)(\.(\*|[a-z][a-z0-9-]*))*")


@dataclass(frozen=True)
class Action:
    """
    Action pattern such as ``payments.create``, ``payments.*`` or ``*.view``.

    Patterns are compared with :meth:`matches`, never with ``==``.
    """
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise PolicyValidationError("Action cannot be null or blank")
        if not ACTION_GRAMMAR.fullmatch(self.value):
            raise PolicyValidationError(f"Invalid action format: {self.value}")

    def matches(self, action: Union["Action", str]) -> bool:
        """
        Check whether this pattern covers the given action id.

        Precedence:
        1. ``*`` matches everything.
        2. ``*.x`` (exactly two segments) matches any id ending in ``.x``,
           however many segments precede it.
        3. ``a.b.*`` matches any id starting with ``a.b.``.
        4. Otherwise the strings must be equal.
        """
        candidate = action.value if isinstance(action, Action) else action

        if self.value == "*":
            return True

        segments = self.value.split(".")
        if len(segments) == 2 and segments[0] == "*":
            return candidate.endswith("." + segments[1])

        if segments[-1] == "*":
            prefix = self.value[:-2]
            return candidate.startswith(prefix + ".")

        return self.value == candidate

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.value.split(".")

    @classmethod
    def all(cls) -> "Action":
        return cls("*")

    def __str__(self) -> str:
        return self.value


# ============================================================================
# Resource
# ============================================================================

@lru_cache(maxsize=1024)
def _compile_resource_glob(pattern: str) -> re.Pattern:
    # Everything is literal except "*", which spans any run of characters
    return re.compile(re.escape(pattern).replace(r"\*", ".*"), re.DOTALL)


@dataclass(frozen=True)
class Resource:
    """
    Resource scope such as ``*``, ``acct:123`` or ``CAN_DDA:DDA:*,acct:456``.

    Each comma-separated sub-pattern is matched independently against the
    full resource id; any hit is a match.
    """
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise PolicyValidationError("Resource cannot be null or blank")

    def patterns(self) -> list[str]:
        # Empty entries stay; each one matches only an empty resource id
        return [part.strip() for part in self.value.split(",")]

    def matches(self, resource_id: str) -> bool:
        for pattern in self.patterns():
            if pattern == "*":
                return True
            if _compile_resource_glob(pattern).fullmatch(resource_id):
                return True
        return False

    @classmethod
    def all(cls) -> "Resource":
        return cls("*")

    @classmethod
    def of_list(cls, resource_ids: Iterable[str]) -> "Resource":
        return cls(",".join(resource_ids))

    def __str__(self) -> str:
        return self.value


# ============================================================================
# Subject
# ============================================================================

ROLE_NAME = re.compile(r"[A-Z][A-Z0-9_]*")

# 8-4-4-4-12 hex, the only spelling accepted for user and group ids
CANONICAL_UUID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


class SubjectType(str, Enum):
    USER = "USER"    # user:{uuid}
    GROUP = "GROUP"  # group:{uuid}
    ROLE = "ROLE"    # role:{ROLE_NAME}


URN_TYPES = {
    "user": SubjectType.USER,
    "group": SubjectType.GROUP,
    "role": SubjectType.ROLE,
}


@dataclass(frozen=True)
class Subject:
    """Target of a policy, serialized as ``user:{uuid}``, ``group:{uuid}`` or ``role:{NAME}``."""
    type: SubjectType
    identifier: str

    def __post_init__(self):
        if not isinstance(self.type, SubjectType):
            raise PolicyValidationError(f"Invalid subject type: {self.type!r}")
        if not isinstance(self.identifier, str) or not self.identifier.strip():
            raise PolicyValidationError("Subject identifier cannot be null or blank")

        if self.type in (SubjectType.USER, SubjectType.GROUP):
            if not CANONICAL_UUID.fullmatch(self.identifier):
                raise PolicyValidationError(f"Invalid UUID for {self.type.value}: {self.identifier}")
            # One subject per id regardless of hex case
            object.__setattr__(self, "identifier", self.identifier.lower())
        elif not ROLE_NAME.fullmatch(self.identifier):
            raise PolicyValidationError(f"Invalid role name: {self.identifier}")

    @classmethod
    def from_urn(cls, urn: str) -> "Subject":
        """Parse ``type:identifier``; the type is matched case-insensitively."""
        if not isinstance(urn, str) or ":" not in urn:
            raise PolicyValidationError(f"Invalid subject URN: {urn}")
        type_part, identifier = urn.split(":", 1)
        subject_type = URN_TYPES.get(type_part.lower())
        if subject_type is None:
            raise PolicyValidationError(f"Unknown subject type: {type_part}")
        return cls(subject_type, identifier)

    @classmethod
    def user(cls, user_id: Union[str, uuid.UUID]) -> "Subject":
        return cls(SubjectType.USER, str(user_id))

    @classmethod
    def group(cls, group_id: Union[str, uuid.UUID]) -> "Subject":
        return cls(SubjectType.GROUP, str(group_id))

    @classmethod
    def role(cls, role_name: str) -> "Subject":
        return cls(SubjectType.ROLE, role_name)

    def to_urn(self) -> str:
        return f"{self.type.value.lower()}:{self.identifier}"

    def __str__(self) -> str:
        return self.to_urn()


# ============================================================================
# Effect
# ============================================================================

class Effect(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"  # takes precedence over ALLOW

    @classmethod
    def parse(cls, value: str) -> "Effect":
        if isinstance(value, Effect):
            return value
        try:
            return cls[value.strip().upper()]
        except (KeyError, AttributeError):
            raise PolicyValidationError(f"Invalid effect: {value!r} (expected ALLOW or DENY)") from None


# ============================================================================
# Predefined roles
# ============================================================================

class PredefinedRole(Enum):
    """System roles and the action patterns they are granted by default."""

    SECURITY_ADMIN = (("security.*",), "All security-related actions")
    SERVICE_ADMIN = (("*",), "Full access to all services and settings")
    READER = (("*.view",), "View all resources")
    CREATOR = (("*.create", "*.update", "*.delete"), "Create, update, and delete resources")
    APPROVER = (("*.approve",), "Approve pending items")

    def __init__(self, patterns: tuple, description: str):
        self._patterns = patterns
        self._description = description

    @property
    def role_name(self) -> str:
        return self.name

    @property
    def action_patterns(self) -> tuple[Action, ...]:
        return tuple(Action(pattern) for pattern in self._patterns)

    @property
    def description(self) -> str:
        return self._description

    @property
    def subject(self) -> Subject:
        return Subject.role(self.name)

    @classmethod
    def from_name(cls, name: str) -> "PredefinedRole":
        role = cls.__members__.get(name) if isinstance(name, str) else None
        if role is None:
            raise PolicyValidationError(f"Unknown predefined role: {name}")
        return role

    @classmethod
    def is_predefined_role(cls, name: str) -> bool:
        return isinstance(name, str) and name in cls.__members__
