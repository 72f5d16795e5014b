"""
Tests for the per-client rate limit on /register and /login.
"""

import pytest

from users_service.core.config import Settings
from users_service.core.rate_limit import RATE_LIMITED_MESSAGE, limiter

from tests.conftest import API, login


@pytest.fixture
def rate_limited(app):
    limiter.reset()
    limiter.enabled = True
    yield limiter
    limiter.enabled = False
    limiter.reset()


def test_limiter_is_off_in_tests(app) -> None:
    assert app.state.limiter is limiter
    assert limiter.enabled is False


def test_rate_limit_active_outside_tests() -> None:
    assert Settings(_env_file=None, ENVIRONMENT="production").rate_limit_active
    assert not Settings(_env_file=None, ENVIRONMENT="production", RATE_LIMIT_ENABLED=False).rate_limit_active
    assert not Settings(_env_file=None, ENVIRONMENT="test").rate_limit_active


async def test_sixth_login_is_429(rate_limited, client) -> None:
    for _ in range(5):
        assert (await login(client, "nobody@example.com", "wrong")).status_code == 401

    response = await login(client, "nobody@example.com", "wrong")

    assert response.status_code == 429
    assert response.json() == {"success": False, "message": RATE_LIMITED_MESSAGE, "errors": None}


async def test_register_and_login_share_one_budget(rate_limited, client) -> None:
    for i in range(3):
        response = await client.post(
            f"{API}/register",
            json={"username": f"user{i}", "email": f"user{i}@x.com", "password": "Secret1!"},
        )
        assert response.status_code == 201
    for _ in range(2):
        assert (await login(client, "user0@x.com", "Secret1!")).status_code == 200

    response = await client.post(
        f"{API}/register",
        json={"username": "late", "email": "late@x.com", "password": "Secret1!"},
    )

    assert response.status_code == 429
    assert response.json()["message"] == "Too many login attempts. Try again in 15 minutes"


async def test_other_routes_are_not_limited(rate_limited, client) -> None:
    for _ in range(5):
        await login(client, "nobody@example.com", "wrong")

    assert (await client.get(f"{API}/health")).status_code == 200
    assert (await client.post(f"{API}/forgot-password", json={"email": "nobody@x.com"})).status_code == 404
