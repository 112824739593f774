"""
Policy repository: the storage collaborator consumed by the resolver and the
command/query service.

Two implementations:
- SqlAlchemyPolicyRepository backs the API with the async session from get_db
- InMemoryPolicyRepository keeps policies in a dict (tests, scripts, dry runs)
"""
import dataclasses
from typing import Iterable, Optional, Protocol
from sqlalchemy import select, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.policies.models import PermissionPolicyRecord
from app.features.policies.policy import Policy
from app.features.policies.types import Subject
from app.utils import get_logger


log = get_logger(__name__)


class PolicyRepository(Protocol):
    async def save(self, policy: Policy) -> None: ...

    async def find_by_id(self, policy_id: str) -> Optional[Policy]: ...

    async def find_by_profile_id(self, profile_id: str) -> list[Policy]: ...

    async def find_by_profile_id_and_subject(self, profile_id: str, subject: Subject) -> list[Policy]: ...

    async def find_by_profile_id_and_subjects(self, profile_id: str, subjects: Iterable[Subject]) -> list[Policy]: ...

    async def delete_by_id(self, policy_id: str) -> None: ...

    async def exists_by_id(self, policy_id: str) -> bool: ...


class SqlAlchemyPolicyRepository:
    """Policy repository over an ``AsyncSession``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, policy: Policy) -> None:
        record = await self.db.get(PermissionPolicyRecord, policy.id)
        if record is None:
            self.db.add(PermissionPolicyRecord.from_domain(policy))
        else:
            record.apply(policy)
        await self.db.commit()

    async def find_by_id(self, policy_id: str) -> Optional[Policy]:
        record = await self.db.get(PermissionPolicyRecord, policy_id)
        return record.to_domain() if record else None

    async def find_by_profile_id(self, profile_id: str) -> list[Policy]:
        stmt = (
            select(PermissionPolicyRecord)
            .where(PermissionPolicyRecord.profile_id == profile_id)
            .order_by(PermissionPolicyRecord.created_at, PermissionPolicyRecord.id)
        )
        result = await self.db.execute(stmt)
        return [record.to_domain() for record in result.scalars().all()]

    async def find_by_profile_id_and_subject(self, profile_id: str, subject: Subject) -> list[Policy]:
        return await self.find_by_profile_id_and_subjects(profile_id, [subject])

    async def find_by_profile_id_and_subjects(self, profile_id: str, subjects: Iterable[Subject]) -> list[Policy]:
        unique_subjects = list(dict.fromkeys(subjects))
        if not unique_subjects:
            return []

        subject_filters = [
            and_(
                PermissionPolicyRecord.subject_type == subject.type.value,
                PermissionPolicyRecord.subject_identifier == subject.identifier,
            )
            for subject in unique_subjects
        ]
        stmt = (
            select(PermissionPolicyRecord)
            .where(
                and_(
                    PermissionPolicyRecord.profile_id == profile_id,
                    or_(*subject_filters),
                )
            )
            .order_by(PermissionPolicyRecord.created_at, PermissionPolicyRecord.id)
        )
        result = await self.db.execute(stmt)
        policies = [record.to_domain() for record in result.scalars().all()]
        log.debug(f"Fetched {len(policies)} policies for {len(unique_subjects)} subjects in profile {profile_id}")
        return policies

    async def delete_by_id(self, policy_id: str) -> None:
        await self.db.execute(delete(PermissionPolicyRecord).where(PermissionPolicyRecord.id == policy_id))
        await self.db.commit()

    async def exists_by_id(self, policy_id: str) -> bool:
        stmt = select(PermissionPolicyRecord.id).where(PermissionPolicyRecord.id == policy_id)
        result = await self.db.execute(stmt)
        return result.first() is not None


class InMemoryPolicyRepository:
    """Dict-backed repository; stores and returns copies so callers cannot alias stored state."""

    def __init__(self, policies: Iterable[Policy] = ()):
        self._policies: dict[str, Policy] = {}
        for policy in policies:
            self._policies[policy.id] = dataclasses.replace(policy)

    async def save(self, policy: Policy) -> None:
        self._policies[policy.id] = dataclasses.replace(policy)

    async def find_by_id(self, policy_id: str) -> Optional[Policy]:
        policy = self._policies.get(policy_id)
        return dataclasses.replace(policy) if policy else None

    async def find_by_profile_id(self, profile_id: str) -> list[Policy]:
        return [dataclasses.replace(p) for p in self._policies.values() if p.profile_id == profile_id]

    async def find_by_profile_id_and_subject(self, profile_id: str, subject: Subject) -> list[Policy]:
        return await self.find_by_profile_id_and_subjects(profile_id, [subject])

    async def find_by_profile_id_and_subjects(self, profile_id: str, subjects: Iterable[Subject]) -> list[Policy]:
        wanted = set(subjects)
        return [
            dataclasses.replace(p)
            for p in self._policies.values()
            if p.profile_id == profile_id and p.subject in wanted
        ]

    async def delete_by_id(self, policy_id: str) -> None:
        self._policies.pop(policy_id, None)

    async def exists_by_id(self, policy_id: str) -> bool:
        return policy_id in self._policies

    def __len__(self) -> int:
        return len(self._policies)
