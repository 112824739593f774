from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.policies.catalog import ACTION_CATALOG
from app.features.policies.repository import SqlAlchemyPolicyRepository
from app.features.policies.service import PermissionPolicyService, SeedRolePoliciesCommand


def _caller(user_id: str, *roles: str) -> dict[str, str]:
    return {"X-User-Id": user_id, "X-User-Roles": ",".join(roles)}


async def _create(client: AsyncClient, profile_id: str, **body) -> dict:
    response = await client.post(f"/profiles/{profile_id}/permission-policies", json=body)
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# Policy CRUD
# ============================================================================

@pytest.mark.asyncio
async def test_create_and_get_policy(async_client: AsyncClient, profile_id: str) -> None:
    created = await _create(
        async_client,
        profile_id,
        subject="ROLE:READER",
        action="*.view",
        effect="allow",
        description="Read everything",
    )

    assert created["subject"] == "role:READER"
    assert created["action"] == "*.view"
    assert created["resource"] == "*"
    assert created["effect"] == "ALLOW"
    assert created["profile_id"] == profile_id
    assert created["system_policy"] is False
    assert created["created_by"] == "system"

    response = await async_client.get(f"/profiles/{profile_id}/permission-policies/{created['id']}")
    assert response.status_code == 200
    assert response.json()["description"] == "Read everything"


@pytest.mark.asyncio
async def test_create_records_calling_user(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    response = await async_client.post(
        f"/profiles/{profile_id}/permission-policies",
        json={"subject": "role:APPROVER", "action": "*.approve"},
        headers=_caller(user_id),
    )

    assert response.status_code == 201
    assert response.json()["created_by"] == user_id


@pytest.mark.parametrize(
    "body, field",
    [
        ({"subject": "READER", "action": "*.view"}, "subject"),
        ({"subject": "user:not-a-uuid", "action": "*.view"}, "subject"),
        ({"subject": "role:READER", "action": "Payments.View"}, "action"),
        ({"subject": "role:READER", "action": "*.view", "effect": "MAYBE"}, "effect"),
        ({"subject": "role:READER", "action": "*.view", "resource": "   "}, "resource"),
        ({"action": "*.view"}, "subject"),
    ],
)
@pytest.mark.asyncio
async def test_create_rejects_invalid_body(async_client: AsyncClient, profile_id: str, body: dict, field: str) -> None:
    response = await async_client.post(f"/profiles/{profile_id}/permission-policies", json=body)

    assert response.status_code == 400
    assert field in response.json()


@pytest.mark.asyncio
async def test_list_policies_filters_by_subject(async_client: AsyncClient, profile_id: str) -> None:
    reader = await _create(async_client, profile_id, subject="role:READER", action="*.view")
    await _create(async_client, profile_id, subject="role:APPROVER", action="*.approve")
    await _create(async_client, "servicing:srf:other", subject="role:READER", action="*.view")

    all_policies = await async_client.get(f"/profiles/{profile_id}/permission-policies")
    readers = await async_client.get(
        f"/profiles/{profile_id}/permission-policies", params={"subject": "role:READER"}
    )
    bad_subject = await async_client.get(
        f"/profiles/{profile_id}/permission-policies", params={"subject": "nobody"}
    )

    assert all_policies.status_code == 200
    assert len(all_policies.json()) == 2
    assert [policy["id"] for policy in readers.json()] == [reader["id"]]
    assert bad_subject.status_code == 400


@pytest.mark.asyncio
async def test_update_policy(async_client: AsyncClient, profile_id: str) -> None:
    created = await _create(async_client, profile_id, subject="role:CREATOR", action="payments.*")

    response = await async_client.put(
        f"/profiles/{profile_id}/permission-policies/{created['id']}",
        json={"resource": "acct:1, acct:2", "effect": "deny"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["resource"] == "acct:1, acct:2"
    assert body["effect"] == "DENY"
    assert body["action"] == "payments.*"
    assert body["subject"] == "role:CREATOR"


@pytest.mark.asyncio
async def test_delete_policy(async_client: AsyncClient, profile_id: str) -> None:
    created = await _create(async_client, profile_id, subject="role:READER", action="*.view")
    url = f"/profiles/{profile_id}/permission-policies/{created['id']}"

    response = await async_client.delete(url)

    assert response.status_code == 204
    assert (await async_client.get(url)).status_code == 404
    assert (await async_client.delete(url)).status_code == 404


@pytest.mark.asyncio
async def test_policy_of_another_profile_is_not_found(async_client: AsyncClient, profile_id: str) -> None:
    created = await _create(async_client, "servicing:srf:other", subject="role:READER", action="*.view")
    url = f"/profiles/{profile_id}/permission-policies/{created['id']}"

    assert (await async_client.get(url)).status_code == 404
    assert (await async_client.put(url, json={"effect": "DENY"})).status_code == 404
    assert (await async_client.delete(url)).status_code == 404


# ============================================================================
# Seeding
# ============================================================================

@pytest.mark.asyncio
async def test_seed_policies_and_protect_them(async_client: AsyncClient, profile_id: str) -> None:
    seed_url = f"/profiles/{profile_id}/permission-policies/seed"

    first = await async_client.post(seed_url, json={"role_names": ["READER", "CREATOR"]})
    second = await async_client.post(seed_url, json={"role_names": ["READER", "CREATOR"]})

    assert first.status_code == 201
    assert len(first.json()) == 4
    assert all(policy["system_policy"] for policy in first.json())
    assert all(policy["created_by"] == "SYSTEM" for policy in first.json())
    assert second.json() == []

    policy_url = f"/profiles/{profile_id}/permission-policies/{first.json()[0]['id']}"
    assert (await async_client.put(policy_url, json={"effect": "DENY"})).status_code == 409
    assert (await async_client.delete(policy_url)).status_code == 409


@pytest.mark.asyncio
async def test_seed_rejects_unknown_role(async_client: AsyncClient, profile_id: str) -> None:
    response = await async_client.post(
        f"/profiles/{profile_id}/permission-policies/seed", json={"role_names": ["NOT_A_ROLE"]}
    )

    assert response.status_code == 400
    assert "role_names" in response.json()


# ============================================================================
# Authorization
# ============================================================================

@pytest.mark.asyncio
async def test_authorize_deny_overrides_allow(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    await _create(async_client, profile_id, subject="role:R", action="payments.*")
    deny = await _create(
        async_client, profile_id, subject="role:R", action="payments.delete", resource="acct:999", effect="DENY"
    )
    url = f"/profiles/{profile_id}/authorize"

    denied = await async_client.post(
        url, json={"action": "payments.delete", "resource_id": "acct:999"}, headers=_caller(user_id, "R")
    )
    allowed = await async_client.post(
        url, json={"action": "payments.delete", "resource_id": "acct:111"}, headers=_caller(user_id, "R")
    )

    assert denied.status_code == 200
    assert denied.json() == {
        "allowed": False,
        "reason": "explicit deny policy matched",
        "effective_effect": "DENY",
        "matched_policy_ids": [deny["id"]],
    }
    assert allowed.json()["allowed"] is True
    assert allowed.json()["reason"] == "allow policy matched"


@pytest.mark.asyncio
async def test_authorize_implicit_deny(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    response = await async_client.post(
        f"/profiles/{profile_id}/authorize",
        json={"action": "payments.create"},
        headers=_caller(user_id, "READER"),
    )

    assert response.status_code == 200
    assert response.json() == {
        "allowed": False,
        "reason": "no matching policy (implicit deny)",
        "effective_effect": None,
        "matched_policy_ids": [],
    }


@pytest.mark.asyncio
async def test_authorize_ignores_invalid_role_names(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    await _create(async_client, profile_id, subject="role:READER", action="*.view")

    response = await async_client.post(
        f"/profiles/{profile_id}/authorize",
        json={"action": "payments.view", "resource_id": "acct:1"},
        headers=_caller(user_id, "reader!", "READER", ""),
    )

    assert response.status_code == 200
    assert response.json()["allowed"] is True


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-User-Roles": "READER"},
    ],
)
@pytest.mark.asyncio
async def test_authorize_requires_user_id_header(async_client: AsyncClient, profile_id: str, headers: dict) -> None:
    response = await async_client.post(
        f"/profiles/{profile_id}/authorize", json={"action": "payments.view"}, headers=headers
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing X-User-Id header"


@pytest.mark.asyncio
async def test_authorize_without_roles_header_uses_user_policies(
    async_client: AsyncClient, profile_id: str, user_id: str
) -> None:
    await _create(async_client, profile_id, subject="role:READER", action="*.view")
    await _create(async_client, profile_id, subject=f"user:{user_id}", action="reports.create")
    url = f"/profiles/{profile_id}/authorize"

    own = await async_client.post(url, json={"action": "reports.create"}, headers={"X-User-Id": user_id})
    role_only = await async_client.post(url, json={"action": "payments.view"}, headers={"X-User-Id": user_id})
    allowed = await async_client.get(f"/profiles/{profile_id}/allowed-actions", headers={"X-User-Id": user_id})

    assert own.status_code == 200
    assert own.json()["allowed"] is True
    assert role_only.json()["allowed"] is False
    assert allowed.json()["roles"] == []
    assert allowed.json()["allowed_actions"] == ["reports.create"]


@pytest.mark.asyncio
async def test_user_id_case_does_not_split_subjects(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    created = await _create(async_client, profile_id, subject=f"user:{user_id.upper()}", action="payments.view")

    response = await async_client.post(
        f"/profiles/{profile_id}/authorize", json={"action": "payments.view"}, headers=_caller(user_id)
    )

    assert created["subject"] == f"user:{user_id}"
    assert response.json()["allowed"] is True


@pytest.mark.asyncio
async def test_authorize_rejects_malformed_input(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    bad_user = await async_client.post(
        f"/profiles/{profile_id}/authorize", json={"action": "payments.view"}, headers=_caller("bob", "READER")
    )
    bad_action = await async_client.post(
        f"/profiles/{profile_id}/authorize", json={"action": "Payments"}, headers=_caller(user_id, "READER")
    )

    assert bad_user.status_code == 400
    assert bad_action.status_code == 400
    assert "action" in bad_action.json()


@pytest.mark.asyncio
async def test_allowed_actions(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    await async_client.post(f"/profiles/{profile_id}/permission-policies/seed", json={"role_names": ["READER"]})
    await _create(async_client, profile_id, subject=f"user:{user_id}", action="reports.view", effect="DENY")

    response = await async_client.get(
        f"/profiles/{profile_id}/allowed-actions", headers=_caller(user_id, "READER")
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == user_id
    assert body["roles"] == ["READER"]
    assert "payments.view" in body["allowed_actions"]
    assert "reports.view" not in body["allowed_actions"]
    assert all(action.endswith(".view") for action in body["allowed_actions"])
    assert body["allowed_actions"] == sorted(body["allowed_actions"])


@pytest.mark.asyncio
async def test_user_permissions(async_client: AsyncClient, profile_id: str, user_id: str) -> None:
    await async_client.post(f"/profiles/{profile_id}/permission-policies/seed", json={"role_names": ["APPROVER"]})
    own = await _create(async_client, profile_id, subject=f"user:{user_id}", action="payments.view", resource="acct:1")

    response = await async_client.get(
        f"/profiles/{profile_id}/users/{user_id}/permissions", params={"roles": "APPROVER,bad-role"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["roles"] == ["APPROVER"]
    assert {policy["action"] for policy in body["policies"]} == {"*.approve", "payments.view"}
    assert own["id"] in {policy["id"] for policy in body["policies"]}
    assert "payments.approve" in body["allowed_actions"]
    assert "payments.view" not in body["allowed_actions"]


@pytest.mark.asyncio
async def test_user_permissions_rejects_bad_user_id(async_client: AsyncClient, profile_id: str) -> None:
    response = await async_client.get(f"/profiles/{profile_id}/users/bob/permissions")

    assert response.status_code == 400


# ============================================================================
# Access enforcement
# ============================================================================

@pytest.mark.asyncio
async def test_enforced_routes_require_identity(async_client: AsyncClient, profile_id: str, enforce_access) -> None:
    response = await async_client.get(f"/profiles/{profile_id}/permission-policies")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_enforced_routes_deny_without_policy(
    async_client: AsyncClient, profile_id: str, user_id: str, enforce_access
) -> None:
    response = await async_client.post(
        f"/profiles/{profile_id}/permission-policies",
        json={"subject": "role:READER", "action": "*.view"},
        headers=_caller(user_id, "READER"),
    )

    assert response.status_code == 403
    assert response.json()["detail"].startswith("Access denied: security.policies.manage")


@pytest.mark.asyncio
async def test_enforced_routes_follow_seeded_roles(
    async_client: AsyncClient, db_session: AsyncSession, profile_id: str, user_id: str, enforce_access
) -> None:
    service = PermissionPolicyService(SqlAlchemyPolicyRepository(db_session))
    await service.seed_role_policies(SeedRolePoliciesCommand(profile_id))
    url = f"/profiles/{profile_id}/permission-policies"
    body = {"subject": "role:CREATOR", "action": "payments.create"}

    reader_list = await async_client.get(url, headers=_caller(user_id, "READER"))
    reader_create = await async_client.post(url, json=body, headers=_caller(user_id, "READER"))
    admin_create = await async_client.post(url, json=body, headers=_caller(user_id, "SECURITY_ADMIN"))

    assert reader_list.status_code == 200
    assert reader_create.status_code == 403
    assert admin_create.status_code == 201
    assert admin_create.json()["created_by"] == user_id


# ============================================================================
# Catalog
# ============================================================================

@pytest.mark.asyncio
async def test_predefined_roles_catalog(async_client: AsyncClient) -> None:
    roles = await async_client.get("/policy-catalog/roles")
    reader = await async_client.get("/policy-catalog/roles/READER")
    unknown = await async_client.get("/policy-catalog/roles/reader")

    assert roles.status_code == 200
    assert {role["name"] for role in roles.json()} == {
        "SECURITY_ADMIN", "SERVICE_ADMIN", "READER", "CREATOR", "APPROVER"
    }
    assert reader.json()["action_patterns"] == ["*.view"]
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_known_actions_catalog(async_client: AsyncClient) -> None:
    response = await async_client.get("/policy-catalog/actions")

    assert response.status_code == 200
    assert response.json() == list(ACTION_CATALOG)
    assert "security.policies.manage" in response.json()


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
