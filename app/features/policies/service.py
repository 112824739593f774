"""
Command and query surface for permission policies.

Commands parse and validate their raw string inputs into value types, so a
malformed subject URN, action, resource or effect fails here with a
PolicyValidationError before anything is written.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from app.features.policies.exceptions import PolicyNotFoundError, SystemPolicyError
from app.features.policies.policy import Policy, policies_for_role
from app.features.policies.repository import PolicyRepository
from app.features.policies.resolver import AuthorizationResolver, AuthorizationResult, build_subjects
from app.features.policies.types import Action, Effect, PredefinedRole, Resource, Subject
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Commands
# ============================================================================

@dataclass(frozen=True)
class CreatePolicyCommand:
    profile_id: str
    subject_urn: str              # user:{uuid}, group:{uuid} or role:{NAME}
    action_pattern: str           # e.g. "payments.*"
    resource_pattern: Optional[str] = None  # defaults to "*"
    effect: Optional[str] = None            # defaults to ALLOW
    description: Optional[str] = None
    created_by: str = "system"


@dataclass(frozen=True)
class UpdatePolicyCommand:
    policy_id: str
    action_pattern: Optional[str] = None
    resource_pattern: Optional[str] = None
    effect: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class DeletePolicyCommand:
    policy_id: str


@dataclass(frozen=True)
class SeedRolePoliciesCommand:
    profile_id: str
    role_names: Optional[tuple[str, ...]] = None  # every predefined role when omitted


@dataclass(frozen=True)
class AuthorizationRequest:
    profile_id: str
    user_id: str
    role_names: frozenset[str]
    action: str
    resource_id: Optional[str] = "*"


# ============================================================================
# Service
# ============================================================================

class PermissionPolicyService:
    def __init__(self, repository: PolicyRepository, resolver: Optional[AuthorizationResolver] = None):
        self.repository = repository
        self.resolver = resolver or AuthorizationResolver(repository)

    # ----- Commands -----

    async def create_policy(self, cmd: CreatePolicyCommand) -> Policy:
        policy = Policy.create(
            profile_id=cmd.profile_id,
            subject=Subject.from_urn(cmd.subject_urn),
            action=Action(cmd.action_pattern),
            resource=Resource(cmd.resource_pattern) if cmd.resource_pattern is not None else None,
            effect=Effect.parse(cmd.effect) if cmd.effect is not None else None,
            description=cmd.description,
            created_by=cmd.created_by,
        )
        await self.repository.save(policy)
        log.info(
            f"Created policy {policy.id} in profile {policy.profile_id}: "
            f"{policy.subject.to_urn()} {policy.effect.value} {policy.action_pattern.value} "
            f"on {policy.resource_pattern.value} by {policy.created_by}"
        )
        return policy

    async def update_policy(self, cmd: UpdatePolicyCommand) -> Policy:
        policy = await self._get_mutable_policy(cmd.policy_id, "update")

        policy.update(
            action=Action(cmd.action_pattern) if cmd.action_pattern is not None else None,
            resource=Resource(cmd.resource_pattern) if cmd.resource_pattern is not None else None,
            effect=Effect.parse(cmd.effect) if cmd.effect is not None else None,
            description=cmd.description,
        )
        await self.repository.save(policy)
        log.info(f"Updated policy {policy.id} in profile {policy.profile_id}")
        return policy

    async def delete_policy(self, cmd: DeletePolicyCommand) -> None:
        policy = await self._get_mutable_policy(cmd.policy_id, "delete")
        await self.repository.delete_by_id(policy.id)
        log.info(f"Deleted policy {policy.id} from profile {policy.profile_id}")

    async def seed_role_policies(self, cmd: SeedRolePoliciesCommand) -> list[Policy]:
        """
        Persist the default policies of predefined roles into a profile.

        Idempotent: a role/action pair already seeded in the profile is skipped.
        Returns the newly created policies.
        """
        if cmd.role_names is None:
            roles = list(PredefinedRole)
        else:
            roles = [PredefinedRole.from_name(name) for name in cmd.role_names]

        existing = {
            (policy.subject, policy.action_pattern.value)
            for policy in await self.repository.find_by_profile_id(cmd.profile_id)
            if policy.system_policy
        }

        created: list[Policy] = []
        for role in roles:
            for policy in policies_for_role(cmd.profile_id, role):
                key = (policy.subject, policy.action_pattern.value)
                if key in existing:
                    continue
                await self.repository.save(policy)
                existing.add(key)
                created.append(policy)

        log.info(
            f"Seeded {len(created)} system policies in profile {cmd.profile_id} "
            f"for roles {[role.name for role in roles]}"
        )
        return created

    async def _get_mutable_policy(self, policy_id: str, operation: str) -> Policy:
        policy = await self.repository.find_by_id(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        if policy.system_policy:
            raise SystemPolicyError(policy_id, operation)
        return policy

    # ----- Queries -----

    async def get_policy_by_id(self, policy_id: str) -> Optional[Policy]:
        return await self.repository.find_by_id(policy_id)

    async def list_policies_by_profile(self, profile_id: str) -> list[Policy]:
        return await self.repository.find_by_profile_id(profile_id)

    async def list_policies_by_subject(self, profile_id: str, subject_urn: str) -> list[Policy]:
        return await self.repository.find_by_profile_id_and_subject(profile_id, Subject.from_urn(subject_urn))

    async def check_authorization(self, request: AuthorizationRequest) -> AuthorizationResult:
        subjects = build_subjects(request.user_id, sorted(request.role_names))
        return await self.resolver.check_authorization(
            request.profile_id,
            subjects,
            request.action,
            request.resource_id,
        )

    async def get_effective_permissions(
        self, profile_id: str, user_id: str, role_names: Iterable[str]
    ) -> list[Policy]:
        subjects = build_subjects(user_id, sorted(role_names))
        return await self.resolver.get_effective_permissions(profile_id, subjects)

    async def get_allowed_actions(self, profile_id: str, user_id: str, role_names: Iterable[str]) -> set[str]:
        subjects = build_subjects(user_id, sorted(role_names))
        return await self.resolver.get_allowed_actions(profile_id, subjects)
