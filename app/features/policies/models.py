"""
Persistence model for permission policies.

One row per policy. The subject is stored split into type and identifier so
that the resolver can fetch every policy for a set of subjects in a single
query.
"""
from datetime import datetime, timezone
from sqlalchemy import String, Text, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin
from app.features.policies.policy import Policy
from app.features.policies.types import Action, Effect, Resource, Subject, SubjectType


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PermissionPolicyRecord(Base, TimestampMixin):
    """
    Stored form of a :class:`Policy`.

    Examples:
    - subject=role:READER, action="*.view", resource="*", effect=ALLOW
    - subject=user:<uuid>, action="payments.delete", resource="acct:999", effect=DENY
    """
    __tablename__ = "permission_policies"
    __table_args__ = (
        Index("ix_permission_policies_profile_subject", "profile_id", "subject_type", "subject_identifier"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    profile_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_identifier: Mapped[str] = mapped_column(String(255), nullable=False)

    action_pattern: Mapped[str] = mapped_column(String(500), nullable=False)
    resource_pattern: Mapped[str] = mapped_column(String(1000), nullable=False)
    effect: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    system_policy: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    @classmethod
    def from_domain(cls, policy: Policy) -> "PermissionPolicyRecord":
        record = cls(id=policy.id)
        record.apply(policy)
        return record

    def apply(self, policy: Policy) -> None:
        """Copy every field of the aggregate onto this row."""
        self.profile_id = policy.profile_id
        self.subject_type = policy.subject.type.value
        self.subject_identifier = policy.subject.identifier
        self.action_pattern = policy.action_pattern.value
        self.resource_pattern = policy.resource_pattern.value
        self.effect = policy.effect.value
        self.description = policy.description
        self.system_policy = policy.system_policy
        self.created_by = policy.created_by
        self.created_at = policy.created_at
        self.updated_at = policy.updated_at

    def to_domain(self) -> Policy:
        return Policy.reconstitute(
            id=self.id,
            profile_id=self.profile_id,
            subject=Subject(SubjectType(self.subject_type), self.subject_identifier),
            action_pattern=Action(self.action_pattern),
            resource_pattern=Resource(self.resource_pattern),
            effect=Effect(self.effect),
            description=self.description,
            system_policy=self.system_policy,
            created_at=_as_utc(self.created_at),
            created_by=self.created_by,
            updated_at=_as_utc(self.updated_at),
        )

    def __repr__(self) -> str:
        return (
            f"<PermissionPolicyRecord(id={self.id}, profile_id={self.profile_id}, "
            f"subject={self.subject_type}:{self.subject_identifier}, effect={self.effect})>"
        )
