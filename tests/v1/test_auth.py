# tests/v1/test_auth.py
"""Tests for account signup, login and token helpers."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import status
from jose import jwt

from parley_stage.core.errors import UnauthorizedError
from parley_stage.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from parley_stage.core.settings import settings
from parley_stage.models import User


def test_signup_creates_account(client, db_session) -> None:
    response = client.post(
        "/api/v1/auth/signup",
        json={"username": "dana", "password": "long-enough"},
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["token_type"] == "bearer"
    assert decode_access_token(data["access_token"]) == data["user_id"]

    user = db_session.query(User).filter(User.username == "dana").one()
    assert user.id == data["user_id"]
    assert user.password_hash != "long-enough"


def test_signup_duplicate_username(client, alice) -> None:
    response = client.post(
        "/api/v1/auth/signup",
        json={"username": "alice", "password": "long-enough"},
    )

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"] == "Username already taken"


@pytest.mark.parametrize(
    "payload",
    [
        {"username": "dana", "password": "short"},
        {"username": "no spaces allowed", "password": "long-enough"},
        {"username": "dana"},
    ],
)
def test_signup_validation(client, payload) -> None:
    response = client.post("/api/v1/auth/signup", json=payload)
    assert response.status_code == 422


def test_login(client, alice) -> None:
    response = client.post(
        "/api/v1/auth/login",
        json={"username": "alice", "password": "alice-password"},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["user_id"] == alice.id


@pytest.mark.parametrize(
    ("username", "password"),
    [("alice", "wrong-password"), ("nobody", "alice-password")],
)
def test_login_rejects_bad_credentials(client, alice, username, password) -> None:
    response = client.post(
        "/api/v1/auth/login",
        json={"username": username, "password": password},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid username or password"


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass")

        assert hashed.startswith("scrypt$")
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("other-pass", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("same") != hash_password("same")

    @pytest.mark.parametrize("stored", ["", "bcrypt$1$2$3$4$5", "scrypt$x$8$1$AAAA$AAAA"])
    def test_unrecognised_hash(self, stored):
        assert not verify_password("anything", stored)


class TestAccessTokens:
    def test_round_trip(self):
        assert decode_access_token(create_access_token("user-1")) == "user-1"

    def test_expired_token(self):
        token = jwt.encode(
            {"sub": "user-1", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(UnauthorizedError):
            decode_access_token(token)

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "user-1"}, "another-secret", algorithm=settings.jwt_algorithm)
        with pytest.raises(UnauthorizedError):
            decode_access_token(token)

    def test_missing_subject(self):
        token = jwt.encode({"scope": "chat"}, settings.secret_key, algorithm=settings.jwt_algorithm)
        with pytest.raises(UnauthorizedError):
            decode_access_token(token)

    @pytest.mark.parametrize("token", [None, "", "not.a.jwt"])
    def test_malformed(self, token):
        with pytest.raises(UnauthorizedError):
            decode_access_token(token)
