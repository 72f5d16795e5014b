"""
One-time bootstrap script — creates the first ADMIN user.

Usage:
    python -m users_service.scripts.create_admin

You only need this ONCE.  Public registration can never produce an
admin; further admins are promoted by an existing one via
`PUT /api/users/{id}`.
"""

import asyncio
import getpass

from users_service.core.config import settings
from users_service.core.database import build_engine, build_session_factory
from users_service.core.errors import ConflictError
from users_service.models.user import UserRole, UserStatus
from users_service.services import user_service


async def create_admin() -> None:
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    async with session_factory() as session:
        # ── Collect input ────────────────────────────────────────────
        print(f"\n🔧  {settings.APP_NAME} — First Admin Setup\n")
        username = input("  Username:    ").strip()
        email = input("  Admin email: ").strip()
        password = getpass.getpass("  Password:    ")
        confirm = getpass.getpass("  Confirm:     ")

        if password != confirm:
            print("\n❌  Passwords do not match.")
            await engine.dispose()
            return

        if not username or not email or not password:
            print("\n❌  All fields are required.")
            await engine.dispose()
            return

        # ── Create the admin user ────────────────────────────────────
        try:
            admin_user = await user_service.create_user(
                username,
                email,
                password,
                session,
                role=UserRole.ADMIN,
                status=UserStatus.ACTIVE,
                email_verified=True,
                bcrypt_rounds=settings.BCRYPT_ROUNDS,
            )
        except ConflictError as exc:
            print(f"\n❌  {exc.message}.")
            await engine.dispose()
            return
        await session.commit()

        print("\n✅  Admin user created successfully!")
        print(f"    ID:       {admin_user.id}")
        print(f"    Username: {admin_user.username}")
        print(f"    Email:    {admin_user.email}")
        print(f"\n   You can now log in via POST {settings.API_PREFIX}/login\n")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_admin())
