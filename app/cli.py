"""CLI commands for management tasks."""

import asyncio
import sys

from sqlalchemy import select

from app.core.database import async_session_maker
from app.core.permissions import Role
from app.core.security import get_password_hash
from app.models.user import User


async def create_super_admin(
    phone_number: str,
    password: str,
    first_name: str,
    last_name: str,
) -> User:
    """Create a platform super admin. Exits if the phone number is taken."""
    async with async_session_maker() as db:
        result = await db.execute(
            select(User).where(User.phone_number == phone_number)
        )
        if result.scalar_one_or_none():
            print(f"Error: Phone number {phone_number} is already registered!")
            sys.exit(1)

        admin = User(
            phone_number=phone_number,
            password_hash=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            role=Role.SUPER_ADMIN,
            school_id=None,
        )

        db.add(admin)
        await db.commit()
        await db.refresh(admin)

        print("Super admin created successfully!")
        print(f"  ID: {admin.id}")
        print(f"  Name: {admin.full_name}")
        print(f"  Phone: {admin.phone_number}")
        return admin


def main() -> None:
    """CLI entry point."""
    if len(sys.argv) < 2:
        print("Usage: python -m app.cli <command>")
        print("Commands:")
        print("  create-super-admin <phone> <password> <first_name> <last_name>")
        sys.exit(1)

    command = sys.argv[1]

    if command == "create-super-admin":
        if len(sys.argv) != 6:
            print(
                "Usage: python -m app.cli create-super-admin "
                "<phone> <password> <first_name> <last_name>"
            )
            sys.exit(1)

        _, _, phone, password, first_name, last_name = sys.argv
        asyncio.run(create_super_admin(phone, password, first_name, last_name))
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
