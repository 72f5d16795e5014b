"""
Tests for the per-account login lockout.
"""

from datetime import timedelta

from sqlalchemy import update

from users_service.models.base import utcnow
from users_service.models.user import User
from users_service.services import lockout_service, user_service
from users_service.services.lockout_service import LockoutPolicy

from tests.conftest import PASSWORD, login


async def _reload(session_factory, user_id) -> User:
    async with session_factory() as session:
        return await user_service.get_user_by_id(user_id, session)


async def test_failed_attempts_are_counted(client, session_factory, test_user) -> None:
    for _ in range(3):
        response = await login(client, test_user.email, "wrong-password")
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    assert (await _reload(session_factory, test_user.id)).login_attempts == 3


async def test_fifth_failure_locks_the_account(client, session_factory, test_user) -> None:
    for _ in range(4):
        assert (await login(client, test_user.email, "wrong-password")).status_code == 401

    response = await login(client, test_user.email, "wrong-password")

    assert response.status_code == 423
    body = response.json()
    assert body["success"] is False
    assert body["minutesRemaining"] > 0
    assert "locked" in body["message"].lower()

    user = await _reload(session_factory, test_user.id)
    assert user.login_attempts == 5
    assert user.lock_until is not None


async def test_correct_password_rejected_while_locked(client, test_user) -> None:
    for _ in range(5):
        await login(client, test_user.email, "wrong-password")

    response = await login(client, test_user.email, PASSWORD)

    assert response.status_code == 423
    assert response.json()["minutesRemaining"] > 0
    assert "refreshToken" not in response.cookies


async def test_elapsed_lock_is_released_on_next_login(client, session_factory, test_user) -> None:
    async with session_factory() as session:
        await session.execute(
            update(User)
            .where(User.id == test_user.id)
            .values(login_attempts=5, lock_until=utcnow() - timedelta(minutes=1))
        )
        await session.commit()

    response = await login(client, test_user.email, PASSWORD)

    assert response.status_code == 200
    user = await _reload(session_factory, test_user.id)
    assert user.login_attempts == 0
    assert user.lock_until is None


async def test_success_resets_counter(client, session_factory, test_user) -> None:
    await login(client, test_user.email, "wrong-password")
    await login(client, test_user.email, "wrong-password")

    assert (await login(client, test_user.email, PASSWORD)).status_code == 200
    assert (await _reload(session_factory, test_user.id)).login_attempts == 0


async def test_unknown_email_and_wrong_password_look_the_same(client, test_user) -> None:
    unknown = await login(client, "nobody@example.com", "whatever")
    wrong = await login(client, test_user.email, "whatever")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["message"] == wrong.json()["message"] == "Invalid credentials"


async def test_register_failure_is_a_single_atomic_update(session_factory, test_user) -> None:
    policy = LockoutPolicy(max_attempts=3, lockout_duration=timedelta(minutes=10))

    async with session_factory() as session:
        states = [
            await lockout_service.register_failure(test_user.id, session, policy)
            for _ in range(3)
        ]
        await session.commit()

    assert [s.attempts for s in states] == [1, 2, 3]
    assert [s.locked for s in states] == [False, False, True]
    assert 1 <= states[-1].minutes_remaining <= 10


async def test_register_failure_ignores_stale_loaded_counters(session_factory, test_user) -> None:
    policy = LockoutPolicy(max_attempts=5, lockout_duration=timedelta(minutes=15))

    async with session_factory() as first, session_factory() as second:
        # Both requests read the row before either one writes.
        assert (await first.get(User, test_user.id)).login_attempts == 0
        assert (await second.get(User, test_user.id)).login_attempts == 0

        one = await lockout_service.register_failure(test_user.id, first, policy)
        await first.commit()
        two = await lockout_service.register_failure(test_user.id, second, policy)
        await second.commit()

    assert one.attempts == 1
    assert two.attempts == 2
    assert (await _reload(session_factory, test_user.id)).login_attempts == 2


async def test_lock_state_treats_past_lock_as_unlocked(test_user) -> None:
    test_user.lock_until = utcnow() - timedelta(seconds=1)
    assert not lockout_service.lock_state(test_user).locked
    assert lockout_service.has_elapsed_lock(test_user)

    test_user.lock_until = utcnow() + timedelta(minutes=5)
    state = lockout_service.lock_state(test_user)
    assert state.locked
    assert state.minutes_remaining == 5
