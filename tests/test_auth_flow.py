"""
Tests for registration, email verification and password reset.
"""

from datetime import timedelta

from sqlalchemy import select, update

from users_service.core.security import TokenKind, verify_password
from users_service.models.base import utcnow
from users_service.models.user import User, UserStatus
from users_service.services import session_service, user_service

from tests.conftest import API, PASSWORD, login

ALICE = {"username": "alice", "email": "alice@x.com", "password": "Secret1!"}


async def _user_with_secrets(session_factory, email: str) -> User:
    async with session_factory() as session:
        return await user_service.get_user_by_email(email, session, with_secrets=True)


async def test_alice_end_to_end(client, session_factory, mailer) -> None:
    registered = await client.post(f"{API}/register", json=ALICE)
    assert registered.status_code == 201
    assert registered.json()["success"] is True
    assert registered.json()["userId"]

    logged_in = await login(client, "alice@x.com", "Secret1!")
    assert logged_in.status_code == 200
    assert logged_in.cookies["accessToken"]
    assert logged_in.cookies["refreshToken"]

    statuses = []
    minutes = None
    for _ in range(5):
        response = await login(client, "alice@x.com", "wrong")
        statuses.append(response.status_code)
        minutes = response.json().get("minutesRemaining")
    assert statuses[-1] == 423
    assert minutes > 0

    tampered = mailer.verification_token()[:-3] + "xyz"
    verify = await client.get(f"{API}/verify-email/{tampered}")
    assert verify.status_code >= 400
    assert verify.json()["success"] is False

    alice = await _user_with_secrets(session_factory, "alice@x.com")
    assert verify_password("Secret1!", alice.password_hash)


async def test_register_starts_pending_and_sends_verification(client, session_factory, mailer) -> None:
    response = await client.post(f"{API}/register", json=ALICE)
    assert response.status_code == 201

    user = await _user_with_secrets(session_factory, "alice@x.com")
    assert user.status == UserStatus.PENDING
    assert user.email_verified is False
    assert user.password_hash != "Secret1!"
    assert len(mailer.outbox) == 1
    assert mailer.outbox[0].to == "alice@x.com"
    assert "/verify-email?token=" in mailer.outbox[0].html_body


async def test_register_lowercases_email(client, session_factory) -> None:
    response = await client.post(f"{API}/register", json={**ALICE, "email": "Alice@X.com"})
    assert response.status_code == 201

    assert (await _user_with_secrets(session_factory, "alice@x.com")) is not None


async def test_register_succeeds_when_mail_fails(client, mailer) -> None:
    mailer.fail = True

    response = await client.post(f"{API}/register", json=ALICE)

    assert response.status_code == 201


async def test_duplicate_email_rejected_first_user_untouched(client, session_factory) -> None:
    first = await client.post(f"{API}/register", json=ALICE)
    original = await _user_with_secrets(session_factory, "alice@x.com")

    second = await client.post(
        f"{API}/register",
        json={"username": "alice2", "email": "alice@x.com", "password": "Other123!"},
    )

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["success"] is False
    after = await _user_with_secrets(session_factory, "alice@x.com")
    assert after.id == original.id
    assert after.username == "alice"
    assert after.password_hash == original.password_hash


async def test_duplicate_username_rejected(client) -> None:
    await client.post(f"{API}/register", json=ALICE)

    response = await client.post(
        f"{API}/register",
        json={"username": "alice", "email": "other@x.com", "password": "Secret1!"},
    )

    assert response.status_code == 409
    assert response.json()["message"] == "Username is already taken"


async def test_register_validation_errors(client) -> None:
    response = await client.post(
        f"{API}/register",
        json={"username": "a b", "email": "not-an-email", "password": "123"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    fields = {e["field"] for e in body["errors"]}
    assert {"username", "email", "password"} <= fields


async def test_register_password_confirmation_must_match(client) -> None:
    response = await client.post(
        f"{API}/register", json={**ALICE, "confirmPassword": "Different1!"},
    )

    assert response.status_code == 400


async def test_register_cannot_self_assign_admin(client) -> None:
    response = await client.post(f"{API}/register", json={**ALICE, "role": "admin"})

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "role"


async def test_register_with_business_role(client, session_factory) -> None:
    response = await client.post(f"{API}/register", json={**ALICE, "role": "hopital"})

    assert response.status_code == 201
    assert (await _user_with_secrets(session_factory, "alice@x.com")).role.value == "hopital"


# ── Email verification ───────────────────────────────────────────────

async def test_verify_email_activates_account(client, session_factory, mailer) -> None:
    await client.post(f"{API}/register", json=ALICE)

    response = await client.get(f"{API}/verify-email/{mailer.verification_token()}")

    assert response.status_code == 200
    assert response.json()["email"] == "alice@x.com"
    user = await _user_with_secrets(session_factory, "alice@x.com")
    assert user.status == UserStatus.ACTIVE
    assert user.email_verified is True


async def test_verify_email_rejects_other_token_kinds(client, issuer, test_user) -> None:
    token = issuer.issue(TokenKind.ACCESS, {"sub": str(test_user.id), "email": test_user.email})

    response = await client.get(f"{API}/verify-email/{token}")

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid or expired token"


async def test_resend_verification(client, mailer) -> None:
    await client.post(f"{API}/register", json=ALICE)

    response = await client.post(f"{API}/resend-verification", json={"email": "alice@x.com"})

    assert response.status_code == 200
    assert len(mailer.outbox) == 2

    unknown = await client.post(f"{API}/resend-verification", json={"email": "nobody@x.com"})
    assert unknown.status_code == 404


async def test_resend_verification_for_verified_user_is_400(client, test_user) -> None:
    response = await client.post(f"{API}/resend-verification", json={"email": test_user.email})

    assert response.status_code == 400


# ── Password reset ───────────────────────────────────────────────────

async def test_forgot_password_stores_digest_and_sends_link(client, session_factory, mailer, test_user) -> None:
    response = await client.post(f"{API}/forgot-password", json={"email": test_user.email})

    assert response.status_code == 200
    assert response.json()["message"] == "Password reset email sent"
    user = await _user_with_secrets(session_factory, test_user.email)
    assert user.password_reset_token_hash
    assert user.password_reset_token_hash != mailer.reset_token()
    assert user.password_reset_expires is not None


async def test_forgot_password_unknown_email_is_404(client) -> None:
    response = await client.post(f"{API}/forgot-password", json={"email": "nobody@x.com"})

    assert response.status_code == 404


async def test_forgot_password_mail_failure_is_502_and_nothing_stored(
    client, session_factory, mailer, test_user,
) -> None:
    mailer.fail = True

    response = await client.post(f"{API}/forgot-password", json={"email": test_user.email})

    assert response.status_code == 502
    assert response.json()["message"] == "Unable to send email"
    user = await _user_with_secrets(session_factory, test_user.email)
    assert user.password_reset_token_hash is None


async def test_reset_password_full_cycle(client, session_factory, mailer, test_user) -> None:
    await login(client, test_user.email)
    await client.post(f"{API}/forgot-password", json={"email": test_user.email})
    token = mailer.reset_token()

    response = await client.post(
        f"{API}/reset-password",
        json={"token": token, "password": "BrandNew9!", "confirmPassword": "BrandNew9!"},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Password updated successfully"
    user = await _user_with_secrets(session_factory, test_user.email)
    assert verify_password("BrandNew9!", user.password_hash)
    assert user.password_reset_token_hash is None
    assert user.password_reset_expires is None
    async with session_factory() as session:
        assert await session_service.count_sessions(test_user.id, session) == 0

    client.cookies.clear()
    assert (await login(client, test_user.email, PASSWORD)).status_code == 401
    assert (await login(client, test_user.email, "BrandNew9!")).status_code == 200

    reused = await client.post(f"{API}/reset-password", json={"token": token, "password": "Again123!"})
    assert reused.status_code == 400


async def test_reset_password_with_expired_stored_token(client, session_factory, mailer, test_user) -> None:
    await client.post(f"{API}/forgot-password", json={"email": test_user.email})
    token = mailer.reset_token()
    async with session_factory() as session:
        await session.execute(
            update(User)
            .where(User.id == test_user.id)
            .values(password_reset_expires=utcnow() - timedelta(minutes=1))
        )
        await session.commit()

    response = await client.post(f"{API}/reset-password", json={"token": token, "password": "BrandNew9!"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    user = await _user_with_secrets(session_factory, test_user.email)
    assert verify_password(PASSWORD, user.password_hash)


async def test_reset_password_superseded_token_rejected(client, mailer, test_user) -> None:
    await client.post(f"{API}/forgot-password", json={"email": test_user.email})
    first = mailer.reset_token()
    await client.post(f"{API}/forgot-password", json={"email": test_user.email})

    response = await client.post(f"{API}/reset-password", json={"token": first, "password": "BrandNew9!"})

    assert response.status_code == 400


async def test_reset_password_confirmation_mismatch(client) -> None:
    response = await client.post(
        f"{API}/reset-password",
        json={"token": "x", "password": "BrandNew9!", "confirmPassword": "Nope"},
    )

    assert response.status_code == 400


async def test_inactive_user_cannot_log_in(client, session_factory, test_user) -> None:
    async with session_factory() as session:
        await session.execute(
            update(User).where(User.id == test_user.id).values(status=UserStatus.INACTIVE)
        )
        await session.commit()

    response = await login(client, test_user.email)

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


async def test_password_hash_never_serialized(client, session_factory, test_user) -> None:
    response = await login(client, test_user.email)

    assert "password" not in response.text.lower()
    async with session_factory() as session:
        row = (await session.execute(select(User).where(User.id == test_user.id))).scalar_one()
        assert "password_hash" not in row.__dict__
