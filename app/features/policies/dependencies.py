"""
FastAPI dependencies for the policy feature.

Implements:
- Repository and service wiring over the request's database session
- Caller identity from the X-User-Id / X-User-Roles headers
- Route protection: each route group declares the access it requires and the
  policy engine itself decides, in the profile named by the path
"""
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.policies.exceptions import PolicyValidationError
from app.features.policies.repository import SqlAlchemyPolicyRepository
from app.features.policies.service import AuthorizationRequest, PermissionPolicyService
from app.features.policies.types import ROLE_NAME, Subject
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Wiring
# ============================================================================

async def get_policy_repository(db: AsyncSession = Depends(get_db)) -> SqlAlchemyPolicyRepository:
    return SqlAlchemyPolicyRepository(db)


async def get_policy_service(
    repository: SqlAlchemyPolicyRepository = Depends(get_policy_repository),
) -> PermissionPolicyService:
    return PermissionPolicyService(repository)


# ============================================================================
# Caller identity
# ============================================================================

@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role_names: frozenset[str]


def parse_role_names(header: Optional[str]) -> frozenset[str]:
    """
    Split a comma-separated roles header.

    Entries that are not valid role identifiers are dropped with a warning
    rather than failing the request.
    """
    if not header:
        return frozenset()
    roles = set()
    for entry in header.split(","):
        name = entry.strip()
        if not name:
            continue
        if not ROLE_NAME.fullmatch(name):
            log.warning(f"Ignoring invalid role name in X-User-Roles: {name!r}")
            continue
        roles.add(name)
    return frozenset(roles)


def parse_caller(user_id: Optional[str], roles_header: Optional[str]) -> CallerIdentity:
    """
    Build a caller from raw header values; raises PolicyValidationError on a bad user id.

    A missing roles header means the caller holds no roles.
    """
    subject = Subject.user(user_id or "")
    return CallerIdentity(user_id=subject.identifier, role_names=parse_role_names(roles_header))


async def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
) -> CallerIdentity:
    """
    Caller identity asserted by the upstream gateway.

    Usage:
        @router.post("/profiles/{profile_id}/authorize")
        async def authorize(caller: CallerIdentity = Depends(get_caller)):
            ...
    """
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-User-Id header",
        )
    try:
        return parse_caller(x_user_id, x_user_roles)
    except PolicyValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ============================================================================
# Route protection
# ============================================================================

@dataclass(frozen=True)
class RequiredAccess:
    """Access a route group demands, checked against the caller's policies."""
    action: str
    resource: str = "*"


POLICY_VIEW = RequiredAccess("security.policies.view")
POLICY_MANAGE = RequiredAccess("security.policies.manage")


def require_access(required: RequiredAccess):
    """
    FastAPI dependency to require an action in the profile named by the path.

    Usage:
        @router.delete("/profiles/{profile_id}/permission-policies/{policy_id}")
        async def delete_policy(
            profile_id: str,
            caller: Optional[CallerIdentity] = Depends(require_access(POLICY_MANAGE)),
        ):
            # Caller is allowed security.policies.manage in this profile
            pass

    Returns the caller (None when enforcement is disabled and no identity
    headers were sent).

    Raises:
        HTTPException: 401 without identity headers, 403 when the policy
        engine denies the required action
    """
    async def access_dependency(
        profile_id: str,
        x_user_id: Optional[str] = Header(None),
        x_user_roles: Optional[str] = Header(None),
        service: PermissionPolicyService = Depends(get_policy_service),
    ) -> Optional[CallerIdentity]:
        caller = None
        if x_user_id is not None:
            try:
                caller = parse_caller(x_user_id, x_user_roles)
            except PolicyValidationError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        if not config.ENFORCE_POLICY_ACCESS:
            return caller

        if caller is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing caller identity (X-User-Id header)",
            )

        result = await service.check_authorization(
            AuthorizationRequest(
                profile_id=profile_id,
                user_id=caller.user_id,
                role_names=caller.role_names,
                action=required.action,
                resource_id=required.resource,
            )
        )
        if not result.allowed:
            log.info(f"User {caller.user_id} denied {required.action} in profile {profile_id}: {result.reason}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied: {required.action} ({result.reason})",
            )
        return caller

    return access_dependency
