import argparse
import asyncio
import os
import sys

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.future import select

from database import Base, async_session_maker, engine
from models.user import User
from services.passwords import hash_password
from services.permissions import Role


async def create_admin(username: str, email: str, password: str) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as db:
        result = await db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user:
            user.role = Role.ADMIN.value
            if password:
                user.password_hash = hash_password(password)
            print(f"🔑 Promoted existing user '{username}' to admin.")
        else:
            if not password:
                print("❌ --password is required when creating a new account.")
                return
            db.add(
                User(
                    username=username,
                    email=email or f"{username}@localhost",
                    password_hash=hash_password(password),
                    role=Role.ADMIN.value,
                )
            )
            print(f"✅ Created admin account '{username}'.")
        await db.commit()
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or promote an admin account.")
    parser.add_argument("username")
    parser.add_argument("--email", default="")
    parser.add_argument("--password", default="")
    args = parser.parse_args()
    asyncio.run(create_admin(args.username, args.email, args.password))


if __name__ == "__main__":
    main()
