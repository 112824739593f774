"""
Pydantic schemas for permission policy management.

Request and response models for policies, authorization checks and the
predefined role catalog.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from app.features.policies.policy import Policy
from app.features.policies.resolver import AuthorizationResult
from app.features.policies.types import Action, Effect, PredefinedRole, Resource, Subject


# ============================================================================
# Policy Schemas
# ============================================================================

class PermissionPolicyBase(BaseModel):
    """Base policy schema."""
    action: str = Field(..., min_length=1, max_length=500, description="Action pattern (e.g., 'payments.*', '*.view')")
    resource: str = Field("*", min_length=1, max_length=1000, description="Comma-separated resource globs")
    effect: str = Field("ALLOW", description="ALLOW or DENY")
    description: Optional[str] = Field(None, max_length=500, description="Policy description")

    @field_validator('action')
    @classmethod
    def action_pattern(cls, v: str) -> str:
        return Action(v).value

    @field_validator('resource')
    @classmethod
    def resource_pattern(cls, v: str) -> str:
        return Resource(v).value

    @field_validator('effect')
    @classmethod
    def effect_upper(cls, v: str) -> str:
        return Effect.parse(v).value


class CreatePermissionPolicyRequest(PermissionPolicyBase):
    """Schema for creating a policy in a profile."""
    subject: str = Field(..., max_length=300, description="Subject URN: user:{uuid}, group:{uuid} or role:{NAME}")

    @field_validator('subject')
    @classmethod
    def subject_urn(cls, v: str) -> str:
        return Subject.from_urn(v).to_urn()


class UpdatePermissionPolicyRequest(BaseModel):
    """Schema for updating a policy. Subject and profile cannot change."""
    action: Optional[str] = Field(None, min_length=1, max_length=500)
    resource: Optional[str] = Field(None, min_length=1, max_length=1000)
    effect: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)

    @field_validator('action')
    @classmethod
    def action_pattern(cls, v: Optional[str]) -> Optional[str]:
        return Action(v).value if v is not None else None

    @field_validator('resource')
    @classmethod
    def resource_pattern(cls, v: Optional[str]) -> Optional[str]:
        return Resource(v).value if v is not None else None

    @field_validator('effect')
    @classmethod
    def effect_upper(cls, v: Optional[str]) -> Optional[str]:
        return Effect.parse(v).value if v is not None else None


class PermissionPolicyResponse(BaseModel):
    """Schema for policy response."""
    id: str
    profile_id: str
    subject: str
    action: str
    resource: str
    effect: str
    description: Optional[str]
    system_policy: bool
    created_at: datetime
    created_by: str
    updated_at: datetime

    @classmethod
    def from_policy(cls, policy: Policy) -> "PermissionPolicyResponse":
        return cls(
            id=policy.id,
            profile_id=policy.profile_id,
            subject=policy.subject.to_urn(),
            action=policy.action_pattern.value,
            resource=policy.resource_pattern.value,
            effect=policy.effect.value,
            description=policy.description,
            system_policy=policy.system_policy,
            created_at=policy.created_at,
            created_by=policy.created_by,
            updated_at=policy.updated_at,
        )


class SeedPoliciesRequest(BaseModel):
    """Schema for seeding predefined role policies into a profile."""
    role_names: Optional[List[str]] = Field(None, description="Predefined role names (all roles if omitted)")

    @field_validator('role_names')
    @classmethod
    def known_roles(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return [PredefinedRole.from_name(name).name for name in v]


# ============================================================================
# Authorization Schemas
# ============================================================================

class AuthorizeRequest(BaseModel):
    """Schema for checking whether the calling user may perform an action."""
    action: str = Field(..., min_length=1, max_length=500, description="Concrete action id (e.g., 'payments.create')")
    resource_id: Optional[str] = Field("*", description="Resource id ('*' when not resource specific)")

    @field_validator('action')
    @classmethod
    def action_format(cls, v: str) -> str:
        return Action(v).value


class AuthorizeResponse(BaseModel):
    """Schema for authorization decision."""
    allowed: bool
    reason: str
    effective_effect: Optional[str] = None
    matched_policy_ids: List[str] = []

    @classmethod
    def from_result(cls, result: AuthorizationResult) -> "AuthorizeResponse":
        return cls(
            allowed=result.allowed,
            reason=result.reason,
            effective_effect=result.effective_effect.value if result.effective_effect else None,
            matched_policy_ids=[policy.id for policy in result.matched_policies],
        )


class EffectivePermissionsResponse(BaseModel):
    """Everything that applies to a user in a profile."""
    user_id: str
    roles: List[str]
    policies: List[PermissionPolicyResponse]
    allowed_actions: List[str]


class AllowedActionsResponse(BaseModel):
    """Concrete action ids the caller may perform on any resource."""
    user_id: str
    roles: List[str]
    allowed_actions: List[str]


# ============================================================================
# Predefined Role Schemas
# ============================================================================

class PredefinedRoleResponse(BaseModel):
    """Schema for a predefined system role."""
    name: str
    description: str
    action_patterns: List[str]

    @classmethod
    def from_role(cls, role: PredefinedRole) -> "PredefinedRoleResponse":
        return cls(
            name=role.name,
            description=role.description,
            action_patterns=[action.value for action in role.action_patterns],
        )
