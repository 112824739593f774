"""
Authorization resolver.

Decides whether a caller, represented by a set of subjects (their user id
plus asserted roles), may perform an action on a resource within a profile.

Decision rule:
1. Collect every policy in the profile whose subject is in the caller's set.
2. Keep the policies whose action pattern and resource pattern both match.
3. Any matching DENY wins.
4. Otherwise any matching ALLOW grants access.
5. Otherwise access is implicitly denied.

The resolver holds no state of its own; each call is one repository read
followed by pure evaluation, so concurrent calls need no locking.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from app.features.policies.catalog import ACTION_CATALOG
from app.features.policies.policy import Policy
from app.features.policies.repository import PolicyRepository
from app.features.policies.types import Action, Effect, Subject
from app.utils import get_logger


log = get_logger(__name__)


REASON_DENY = "explicit deny policy matched"
REASON_ALLOW = "allow policy matched"
REASON_NO_MATCH = "no matching policy (implicit deny)"


@dataclass(frozen=True)
class AuthorizationResult:
    allowed: bool
    reason: str
    effective_effect: Optional[Effect]
    matched_policies: tuple[Policy, ...] = field(default=(), compare=False)

    @classmethod
    def denied(cls, policies: Sequence[Policy]) -> "AuthorizationResult":
        return cls(False, REASON_DENY, Effect.DENY, tuple(policies))

    @classmethod
    def granted(cls, policies: Sequence[Policy]) -> "AuthorizationResult":
        return cls(True, REASON_ALLOW, Effect.ALLOW, tuple(policies))

    @classmethod
    def no_match(cls) -> "AuthorizationResult":
        return cls(False, REASON_NO_MATCH, None)


def build_subjects(user_id: str, role_names: Iterable[str] = ()) -> list[Subject]:
    """
    Subjects representing one caller: their user id plus each asserted role.

    Raises PolicyValidationError for a malformed user id or role name; the
    boundary layer decides whether to drop such values first.
    """
    subjects = [Subject.user(user_id)]
    for role_name in role_names:
        subject = Subject.role(role_name)
        if subject not in subjects:
            subjects.append(subject)
    return subjects


def evaluate(policies: Iterable[Policy], action: Union[Action, str], resource_id: str = "*") -> AuthorizationResult:
    """Apply deny-overrides-allow to ``policies`` for one action/resource pair."""
    matching = [policy for policy in policies if policy.matches(action, resource_id)]

    deny_policies = [policy for policy in matching if policy.effect == Effect.DENY]
    if deny_policies:
        return AuthorizationResult.denied(deny_policies)

    allow_policies = [policy for policy in matching if policy.effect == Effect.ALLOW]
    if allow_policies:
        return AuthorizationResult.granted(allow_policies)

    return AuthorizationResult.no_match()


class AuthorizationResolver:
    def __init__(self, repository: PolicyRepository, catalog: Optional[Iterable[str]] = None):
        self.repository = repository
        self.catalog = tuple(catalog) if catalog is not None else ACTION_CATALOG

    async def get_effective_permissions(self, profile_id: str, subjects: Iterable[Subject]) -> list[Policy]:
        """Every policy in the profile that targets one of ``subjects``."""
        subjects = list(subjects)
        if not subjects:
            return []
        return await self.repository.find_by_profile_id_and_subjects(profile_id, subjects)

    async def check_authorization(
        self,
        profile_id: str,
        subjects: Iterable[Subject],
        action: Union[Action, str],
        resource_id: Optional[str] = "*",
    ) -> AuthorizationResult:
        if not isinstance(action, Action):
            action = Action(action)
        if resource_id is None:
            resource_id = "*"

        policies = await self.get_effective_permissions(profile_id, subjects)
        result = evaluate(policies, action, resource_id)

        log.debug(
            f"Authorization in profile {profile_id}: action={action.value} resource={resource_id} "
            f"allowed={result.allowed} reason={result.reason!r} "
            f"policies={[policy.id for policy in result.matched_policies]}"
        )
        return result

    async def get_allowed_actions(self, profile_id: str, subjects: Iterable[Subject]) -> set[str]:
        """
        Concrete action ids the caller may perform on any resource (``"*"``).

        Candidates are the non-wildcard action patterns of the applicable
        policies plus every catalog entry covered by an applicable ALLOW
        pattern. A candidate is kept only if it passes the same evaluation as
        ``check_authorization(profile_id, subjects, action, "*")``.
        """
        policies = await self.get_effective_permissions(profile_id, subjects)

        candidates: set[str] = set()
        for policy in policies:
            if not policy.action_pattern.is_wildcard:
                candidates.add(policy.action_pattern.value)

        allow_patterns = [policy.action_pattern for policy in policies if policy.effect == Effect.ALLOW]
        for action_id in self.catalog:
            if any(pattern.matches(action_id) for pattern in allow_patterns):
                candidates.add(action_id)

        return {action_id for action_id in candidates if evaluate(policies, action_id, "*").allowed}
