"""Create the schema and, optionally, the first tenant with its admin user.

Usage:
    DATABASE_URL=postgresql+asyncpg://... python tools/init_db.py --tenant "Mi Taller" --admin admin@taller --password secret
"""

import argparse
import asyncio
import os

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from repairdesk import models
from repairdesk.auth import get_password_hash


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def seed_admin(engine: AsyncEngine, tenant_name: str, username: str, password: str) -> str:
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as session:
        existing = await session.execute(select(models.User).where(models.User.username == username))
        user = existing.scalar_one_or_none()
        if user is not None:
            print(f"User {username} already exists (tenant {user.tenant_id}).")
            return user.tenant_id
        tenant = models.Tenant(name=tenant_name)
        session.add(tenant)
        await session.flush()
        session.add(
            models.User(
                tenant_id=tenant.id,
                username=username,
                name=username,
                password_hash=get_password_hash(password),
                role=models.UserRole.ADMIN.value,
            )
        )
        await session.commit()
        print(f"Created tenant {tenant.id} with admin {username}.")
        return tenant.id


async def main(args: argparse.Namespace) -> None:
    engine = create_async_engine(args.database_url)
    try:
        await create_schema(engine)
        print("Schema ready.")
        if args.tenant and args.admin and args.password:
            await seed_admin(engine, args.tenant, args.admin, args.password)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", default=os.getenv("DATABASE_URL"))
    parser.add_argument("--tenant")
    parser.add_argument("--admin")
    parser.add_argument("--password")
    args = parser.parse_args()
    if not args.database_url:
        raise SystemExit("DATABASE_URL env var required")
    asyncio.run(main(args))
