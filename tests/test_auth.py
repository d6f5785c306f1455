"""Tests for registration, tokens and role checks."""

from datetime import timedelta

import jwt

from conftest import auth_header
from storefront.core.config import settings
from storefront.security.utils import now_utc


def register(client, email="new@example.com", password="password123"):
    return client.post("/api/auth/register", json={"email": email, "password": password, "first_name": "New"})


class TestRegisterLogin:
    def test_register_and_login(self, client):
        response = register(client)
        assert response.status_code == 201
        assert response.json()["data"]["user"]["role"] == "customer"
        login = client.post("/api/auth/login", json={"email": "new@example.com", "password": "password123"})
        assert login.status_code == 200
        assert login.json()["data"]["tokens"]["token_type"] == "bearer"

    def test_duplicate_email(self, client):
        register(client)
        response = register(client)
        assert response.status_code == 409
        assert response.json() == {"status": "fail", "message": "Email already registered"}

    def test_short_password(self, client):
        response = register(client, password="short")
        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid input.")

    def test_wrong_password(self, client, customer):
        response = client.post("/api/auth/login", json={"email": customer.email, "password": "nope12345"})
        assert response.status_code == 401


class TestTokens:
    def test_refresh_rotates(self, client):
        tokens = register(client).json()["data"]["tokens"]
        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        # the used refresh token is revoked
        again = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert again.status_code == 401

    def test_logout_revokes(self, client):
        tokens = register(client).json()["data"]["tokens"]
        assert client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}).status_code == 200
        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 401

    def test_access_token_cannot_refresh(self, client):
        tokens = register(client).json()["data"]["tokens"]
        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert response.status_code == 401

    def test_expired_access_token(self, client, customer):
        token = jwt.encode({"sub": customer.email, "uid": customer.id, "role": "customer", "type": "access",
                            "exp": now_utc() - timedelta(minutes=1)}, settings.JWT_SECRET,
                           algorithm=settings.JWT_ALGORITHM)
        response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert "expired" in response.json()["message"]


class TestProfile:
    def test_me_includes_loyalty(self, client, customer):
        data = client.get("/api/users/me", headers=auth_header(customer)).json()["data"]
        assert data["user"]["email"] == customer.email
        assert data["loyalty"]["tier"] == "none"

    def test_missing_token(self, client):
        response = client.get("/api/users/me")
        assert response.status_code == 401
        assert response.json()["status"] == "fail"
