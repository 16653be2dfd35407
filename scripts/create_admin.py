"""
Create (or promote) a platform admin.

Usage: python scripts/create_admin.py admin@yourcompany.com --first-name Ada --last-name Lovelace
The password is read from ADMIN_PASSWORD or prompted for.
"""
import argparse
import asyncio
import getpass
import os
import sys
import uuid
from pathlib import Path

# Add parent directory to path to import portal modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from portal.core.db import AsyncSessionFactory, init_database
from portal.core.rbac import AdminRole
from portal.core.security import hash_password
from portal.models.admin import AdminProfile


async def create_admin(email: str, password: str, first_name: str, last_name: str, role: AdminRole) -> None:
    await init_database()
    email = email.lower()

    async with AsyncSessionFactory() as db:
        result = await db.execute(select(AdminProfile).where(AdminProfile.email == email))
        admin = result.scalar_one_or_none()

        if admin:
            admin.hashed_password = hash_password(password)
            admin.role = role
            admin.is_active = True
            print(f"Updated existing admin {email} (role={role.value})")
        else:
            db.add(
                AdminProfile(
                    id=str(uuid.uuid4()),
                    email=email,
                    hashed_password=hash_password(password),
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                    is_active=True,
                )
            )
            print(f"Created admin {email} (role={role.value})")

        await db.commit()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a platform admin")
    parser.add_argument("email")
    parser.add_argument("--first-name", default="Platform")
    parser.add_argument("--last-name", default="Admin")
    parser.add_argument(
        "--role",
        choices=[r.value for r in AdminRole],
        default=AdminRole.SUPER_ADMIN.value,
    )
    args = parser.parse_args()

    password = os.environ.get("ADMIN_PASSWORD") or getpass.getpass("Password: ")
    if len(password) < 12:
        parser.error("password must be at least 12 characters")

    asyncio.run(create_admin(args.email, password, args.first_name, args.last_name, AdminRole(args.role)))


if __name__ == "__main__":
    main()
