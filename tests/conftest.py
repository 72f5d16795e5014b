"""
Pytest configuration and fixtures.

Every test gets its own application built by `create_app(test_settings)`
on an in-memory SQLite database, a recording mailer instead of SMTP,
and an httpx client talking to the app in-process.
"""

import os
import re
from dataclasses import dataclass

# Read by the module-level `settings` / `app` when users_service is imported.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from users_service.core.config import Settings  # noqa: E402
from users_service.core.security import TokenIssuer, build_token_issuer  # noqa: E402
from users_service.main import create_app  # noqa: E402
from users_service.models import Base, User, UserRole, UserStatus  # noqa: E402
from users_service.services import user_service  # noqa: E402

API = "/api/users"
PASSWORD = "Secret1!"


@dataclass
class SentMail:
    to: str
    subject: str
    html_body: str


class RecordingMailer:
    """Mailer double: keeps every message, can be told to fail."""

    def __init__(self) -> None:
        self.outbox: list[SentMail] = []
        self.fail = False

    async def send(self, to: str, subject: str, html_body: str) -> bool:
        if self.fail:
            return False
        self.outbox.append(SentMail(to, subject, html_body))
        return True

    def last_token(self, pattern: str) -> str:
        match = re.search(pattern, self.outbox[-1].html_body)
        assert match, "no token link in the last email"
        return match.group(1)

    def verification_token(self) -> str:
        return self.last_token(r"verify-email\?token=([^\"<\s]+)")

    def reset_token(self) -> str:
        return self.last_token(r"reset-password/([^\"<\s]+)")


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        JWT_ACCESS_SECRET="test-access-secret",
        JWT_REFRESH_SECRET="test-refresh-secret",
        JWT_EMAIL_SECRET="test-email-secret",
        JWT_PASSWORD_RESET_SECRET="test-reset-secret",
        BCRYPT_ROUNDS=4,
        MAX_LOGIN_ATTEMPTS=5,
        LOCKOUT_DURATION_MINUTES=30,
    )


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def issuer(test_settings: Settings) -> TokenIssuer:
    return build_token_issuer(test_settings)


@pytest.fixture
async def app(test_settings, mailer):
    application = create_app(test_settings)
    application.state.mailer = mailer
    async with application.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield application
    await application.state.engine.dispose()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture
def session_factory(app):
    return app.state.session_factory


async def make_user(
    session_factory,
    username: str,
    email: str,
    *,
    role: UserRole = UserRole.PHARMACIE_STANDARD,
    status: UserStatus = UserStatus.ACTIVE,
    password: str = PASSWORD,
) -> User:
    async with session_factory() as session:
        user = await user_service.create_user(
            username,
            email,
            password,
            session,
            role=role,
            status=status,
            email_verified=status != UserStatus.PENDING,
            bcrypt_rounds=4,
        )
        await session.commit()
        return user


async def login(client: AsyncClient, email: str, password: str = PASSWORD):
    return await client.post(f"{API}/login", json={"email": email, "password": password})


@pytest.fixture
async def test_user(session_factory) -> User:
    return await make_user(session_factory, "bob", "bob@example.com")


@pytest.fixture
async def test_admin(session_factory) -> User:
    return await make_user(session_factory, "admin", "admin@example.com", role=UserRole.ADMIN)
