"""
Seed script to persist predefined role policies into a profile.

Run this once per profile after database initialization. Callers holding the
SECURITY_ADMIN role can then manage the profile's policies through the API
(``security.*`` covers ``security.policies.manage``).

Usage:
    uv run python -m scripts.seed_policies <profile_id>
    uv run python -m scripts.seed_policies <profile_id> --roles SECURITY_ADMIN READER
"""
import argparse
import asyncio

from app.core.database.engine import get_db, init_db
from app.features.policies.repository import SqlAlchemyPolicyRepository
from app.features.policies.service import PermissionPolicyService, SeedRolePoliciesCommand
from app.features.policies.types import PredefinedRole
from app.utils import get_logger


log = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed predefined role policies into a profile")
    parser.add_argument("profile_id", help="Profile to seed")
    parser.add_argument(
        "--roles",
        nargs="+",
        choices=[role.name for role in PredefinedRole],
        help="Predefined roles to seed (default: all)",
    )
    return parser.parse_args(argv)


async def seed_profile(profile_id: str, role_names=None) -> int:
    """Seed one profile and return the number of policies created."""
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        service = PermissionPolicyService(SqlAlchemyPolicyRepository(db))
        try:
            created = await service.seed_role_policies(
                SeedRolePoliciesCommand(profile_id, tuple(role_names) if role_names else None)
            )
        except Exception as e:
            log.error(f"Error seeding policies: {e}", exc_info=True)
            await db.rollback()
            raise

        for policy in created:
            log.info(f"  - {policy.subject.to_urn()} ALLOW {policy.action_pattern.value} on *")
        break  # Only use first session

    return len(created)


async def main(argv=None):
    args = parse_args(argv)
    log.info(f"Seeding predefined role policies into profile {args.profile_id}...")
    count = await seed_profile(args.profile_id, args.roles)
    log.info(f"Policy seeding completed: {count} policies created")


if __name__ == "__main__":
    asyncio.run(main())
