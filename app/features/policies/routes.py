"""
Permission policy API routes.

Provides endpoints for managing a profile's policies, seeding predefined role
policies, and asking the policy engine for decisions.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.features.policies.catalog import ACTION_CATALOG
from app.features.policies.dependencies import (
    POLICY_MANAGE,
    POLICY_VIEW,
    CallerIdentity,
    get_caller,
    get_policy_service,
    parse_role_names,
    require_access,
)
from app.features.policies.policy import Policy
from app.features.policies.schemas import (
    AllowedActionsResponse,
    AuthorizeRequest,
    AuthorizeResponse,
    CreatePermissionPolicyRequest,
    EffectivePermissionsResponse,
    PermissionPolicyResponse,
    PredefinedRoleResponse,
    SeedPoliciesRequest,
    UpdatePermissionPolicyRequest,
)
from app.features.policies.service import (
    AuthorizationRequest,
    CreatePolicyCommand,
    DeletePolicyCommand,
    PermissionPolicyService,
    SeedRolePoliciesCommand,
    UpdatePolicyCommand,
)
from app.features.policies.types import PredefinedRole
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()
catalog_router = APIRouter()


async def _get_profile_policy(service: PermissionPolicyService, profile_id: str, policy_id: str) -> Policy:
    policy = await service.get_policy_by_id(policy_id)
    if policy is None or policy.profile_id != profile_id:
        raise HTTPException(status_code=404, detail="Policy not found")
    return policy


# ============================================================================
# Policy Routes
# ============================================================================

@router.get("/{profile_id}/permission-policies", response_model=List[PermissionPolicyResponse])
async def list_policies(
    profile_id: str,
    subject: Optional[str] = Query(None, description="Only policies for this subject URN"),
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_VIEW)),
):
    """List the policies of a profile, optionally for a single subject."""
    log.info(f"Listing permission policies for profile {profile_id}")
    if subject:
        policies = await service.list_policies_by_subject(profile_id, subject)
    else:
        policies = await service.list_policies_by_profile(profile_id)
    return [PermissionPolicyResponse.from_policy(policy) for policy in policies]


@router.post(
    "/{profile_id}/permission-policies",
    response_model=PermissionPolicyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_policy(
    profile_id: str,
    request: CreatePermissionPolicyRequest,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_MANAGE)),
):
    """Create a policy in a profile."""
    created_by = caller.user_id if caller else "system"
    policy = await service.create_policy(
        CreatePolicyCommand(
            profile_id=profile_id,
            subject_urn=request.subject,
            action_pattern=request.action,
            resource_pattern=request.resource,
            effect=request.effect,
            description=request.description,
            created_by=created_by,
        )
    )
    return PermissionPolicyResponse.from_policy(policy)


@router.post(
    "/{profile_id}/permission-policies/seed",
    response_model=List[PermissionPolicyResponse],
    status_code=status.HTTP_201_CREATED,
)
async def seed_policies(
    profile_id: str,
    request: SeedPoliciesRequest,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_MANAGE)),
):
    """Seed the default policies of predefined roles into a profile (idempotent)."""
    role_names = tuple(request.role_names) if request.role_names is not None else None
    created = await service.seed_role_policies(SeedRolePoliciesCommand(profile_id, role_names))
    return [PermissionPolicyResponse.from_policy(policy) for policy in created]


@router.get("/{profile_id}/permission-policies/{policy_id}", response_model=PermissionPolicyResponse)
async def get_policy(
    profile_id: str,
    policy_id: str,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_VIEW)),
):
    """Get a specific policy of a profile."""
    policy = await _get_profile_policy(service, profile_id, policy_id)
    return PermissionPolicyResponse.from_policy(policy)


@router.put("/{profile_id}/permission-policies/{policy_id}", response_model=PermissionPolicyResponse)
async def update_policy(
    profile_id: str,
    policy_id: str,
    request: UpdatePermissionPolicyRequest,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_MANAGE)),
):
    """Update action, resource, effect or description of a policy."""
    await _get_profile_policy(service, profile_id, policy_id)

    policy = await service.update_policy(
        UpdatePolicyCommand(
            policy_id=policy_id,
            action_pattern=request.action,
            resource_pattern=request.resource,
            effect=request.effect,
            description=request.description,
        )
    )
    return PermissionPolicyResponse.from_policy(policy)


@router.delete("/{profile_id}/permission-policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    profile_id: str,
    policy_id: str,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_MANAGE)),
):
    """Delete a policy."""
    await _get_profile_policy(service, profile_id, policy_id)
    await service.delete_policy(DeletePolicyCommand(policy_id))
    return None


# ============================================================================
# Authorization Routes
# ============================================================================

@router.post("/{profile_id}/authorize", response_model=AuthorizeResponse)
async def authorize(
    profile_id: str,
    request: AuthorizeRequest,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: CallerIdentity = Depends(get_caller),
):
    """Check whether the calling user may perform an action on a resource."""
    log.info(f"Checking authorization for profile {profile_id} action {request.action}")
    result = await service.check_authorization(
        AuthorizationRequest(
            profile_id=profile_id,
            user_id=caller.user_id,
            role_names=caller.role_names,
            action=request.action,
            resource_id=request.resource_id,
        )
    )
    return AuthorizeResponse.from_result(result)


@router.get("/{profile_id}/allowed-actions", response_model=AllowedActionsResponse)
async def allowed_actions(
    profile_id: str,
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: CallerIdentity = Depends(get_caller),
):
    """Concrete actions the calling user may perform in a profile."""
    actions = await service.get_allowed_actions(profile_id, caller.user_id, caller.role_names)
    return AllowedActionsResponse(
        user_id=caller.user_id,
        roles=sorted(caller.role_names),
        allowed_actions=sorted(actions),
    )


@router.get("/{profile_id}/users/{user_id}/permissions", response_model=EffectivePermissionsResponse)
async def user_permissions(
    profile_id: str,
    user_id: str,
    roles: Optional[str] = Query(None, description="Comma-separated role names held by the user"),
    service: PermissionPolicyService = Depends(get_policy_service),
    caller: Optional[CallerIdentity] = Depends(require_access(POLICY_VIEW)),
):
    """Everything that applies to a user in a profile: policies and allowed actions."""
    log.info(f"Getting permissions for user {user_id} in profile {profile_id}")
    role_names = parse_role_names(roles)

    policies = await service.get_effective_permissions(profile_id, user_id, role_names)
    actions = await service.get_allowed_actions(profile_id, user_id, role_names)

    return EffectivePermissionsResponse(
        user_id=user_id,
        roles=sorted(role_names),
        policies=[PermissionPolicyResponse.from_policy(policy) for policy in policies],
        allowed_actions=sorted(actions),
    )


# ============================================================================
# Catalog Routes
# ============================================================================

@catalog_router.get("/roles", response_model=List[PredefinedRoleResponse])
async def list_predefined_roles():
    """List the predefined system roles and their default action patterns."""
    return [PredefinedRoleResponse.from_role(role) for role in PredefinedRole]


@catalog_router.get("/roles/{role_name}", response_model=PredefinedRoleResponse)
async def get_predefined_role(role_name: str):
    """Get one predefined role by exact name."""
    if not PredefinedRole.is_predefined_role(role_name):
        raise HTTPException(status_code=404, detail="Predefined role not found")
    return PredefinedRoleResponse.from_role(PredefinedRole.from_name(role_name))


@catalog_router.get("/actions", response_model=List[str])
async def list_known_actions():
    """List the concrete action ids known to the platform."""
    return list(ACTION_CATALOG)
