"""Session token and membership dependency tests."""

import pytest

from factories import insert_user, insert_verified_member_user
from marketplace.services.auth import (
    create_token,
    get_current_user,
    is_verified_member,
    require_admin,
    require_verified_member,
    verify_token,
)
from marketplace.services.errors import AuthenticationRequiredError, PermissionDeniedError


class TestTokens:

    def test_round_trip(self):
        payload = verify_token(create_token("sub-1"))
        assert payload["sub"] == "sub-1"

    def test_expired(self):
        token = create_token("sub-1", expire_hours=-1)
        with pytest.raises(ValueError):
            verify_token(token)

    def test_garbage(self):
        with pytest.raises(ValueError):
            verify_token("not.a.token")


class TestDependencies:

    def test_current_user_required(self):
        with pytest.raises(AuthenticationRequiredError) as exc_info:
            get_current_user(None)
        assert exc_info.value.status_code == 401

    def test_verified_member(self):
        user = insert_verified_member_user()
        assert is_verified_member(user)
        assert require_verified_member(user) is user

    def test_pending_member(self):
        user = insert_verified_member_user(verification_status="PENDING")
        assert not is_verified_member(user)
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_verified_member(user)
        assert exc_info.value.code == "MEMBER_NOT_VERIFIED"

    def test_no_member_profile(self):
        user = insert_user(email="plain@example.com")
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_verified_member(user)
        assert exc_info.value.code == "MEMBER_PROFILE_REQUIRED"

    def test_admin(self):
        admin = insert_user(email="admin@example.com", role="ADMIN")
        assert require_admin(admin) is admin
        with pytest.raises(PermissionDeniedError):
            require_admin(insert_user(email="user@example.com"))


class TestRequestAuthentication:

    def test_unregistered_subject(self, client):
        token = create_token("sub-nobody")
        resp = client.post("/claims/1", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403
        assert resp.json()["code"] == "USER_NOT_REGISTERED"

    def test_invalid_token(self, client):
        resp = client.post("/claims/1", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_TOKEN"
