"""
Tests for Privy access-token verification and the auth dependencies.
"""

import time

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import HTTPException
from fastapi.testclient import TestClient
from jose import jwt

from farfield.core.config import settings
from farfield.db.session import get_db
from farfield.services.auth import verify_privy_token
from server import app

APP_ID = "test-app-id"


def _pem_pair():
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture(scope="module")
def keys():
    return _pem_pair()


@pytest.fixture
def sign(keys):
    private_pem, _ = keys

    def _sign(**overrides):
        now = int(time.time())
        claims = {
            "sub": "did:privy:buyer",
            "sid": "session-1",
            "aud": APP_ID,
            "iss": "privy.io",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {key: value for key, value in claims.items() if value is not None}
        return jwt.encode(claims, private_pem, algorithm="ES256")

    return _sign


class TestVerifyPrivyToken:
    def test_valid_token(self, keys, sign):
        _, public_pem = keys

        identity = verify_privy_token(sign(), verification_key=public_pem, app_id=APP_ID)

        assert identity.privy_id == "did:privy:buyer"
        assert identity.session_id == "session-1"
        assert identity.app_id == APP_ID

    @pytest.mark.parametrize("overrides", [
        {"exp": int(time.time()) - 60},
        {"aud": "another-app"},
        {"iss": "evil.example"},
        {"sub": None},
    ])
    def test_rejected_claims(self, keys, sign, overrides):
        _, public_pem = keys

        with pytest.raises(HTTPException) as exc_info:
            verify_privy_token(sign(**overrides), verification_key=public_pem, app_id=APP_ID)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid or expired token"

    def test_token_signed_by_other_key(self, keys, sign):
        _, other_public_pem = _pem_pair()

        with pytest.raises(HTTPException) as exc_info:
            verify_privy_token(sign(), verification_key=other_public_pem, app_id=APP_ID)
        assert exc_info.value.status_code == 401

    def test_garbage_token(self, keys):
        _, public_pem = keys

        with pytest.raises(HTTPException):
            verify_privy_token("not.a.jwt", verification_key=public_pem, app_id=APP_ID)


class TestAuthDependencies:
    @pytest.fixture
    def anonymous_client(self, seeded_db, keys, monkeypatch):
        _, public_pem = keys
        monkeypatch.setattr(settings, "PRIVY_VERIFICATION_KEY", public_pem)
        monkeypatch.setattr(settings, "PRIVY_APP_ID", APP_ID)
        app.dependency_overrides[get_db] = lambda: seeded_db
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_bearer_token_resolves_account(self, anonymous_client, sign):
        response = anonymous_client.get("/api/users/me", headers={"Authorization": f"Bearer {sign()}"})

        assert response.status_code == 200
        assert response.json()["data"]["username"] == "alice"
        assert response.json()["data"]["farcasterFid"] == 100

    def test_missing_token(self, anonymous_client):
        response = anonymous_client.get("/api/users/me")

        assert response.status_code == 401
        assert response.json()["error"] == "Authentication token required"

    def test_expired_token(self, anonymous_client, sign):
        token = sign(exp=int(time.time()) - 60)
        response = anonymous_client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid or expired token"

    def test_unknown_account(self, anonymous_client, sign):
        token = sign(sub="did:privy:nobody")
        response = anonymous_client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 404
        assert response.json()["error"] == "User not found"

    def test_optional_auth_tolerates_bad_token(self, anonymous_client):
        response = anonymous_client.get(
            "/api/products/P1/ratings",
            headers={"Authorization": "Bearer garbage"},
        )

        assert response.status_code == 200
        assert response.json()["data"] == []
