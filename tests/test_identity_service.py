"""Tests for bearer token resolution."""

import time

import jwt
import pytest

from conftest import TOKEN_SECRET, issue_token
from creatorpass.domain.models import Role
from creatorpass.services.identity_service import IdentityService


@pytest.fixture
def identity():
    return IdentityService(TOKEN_SECRET)


class TestIdentityService:
    def test_valid_token(self, identity):
        principal = identity.verify_token(issue_token("user-1", "creator"))
        assert principal.id == "user-1"
        assert principal.role is Role.CREATOR

    def test_role_defaults_to_viewer(self, identity):
        token = jwt.encode({"sub": "user-1"}, TOKEN_SECRET, algorithm="HS256")
        assert identity.verify_token(token).role is Role.VIEWER

    def test_wrong_secret(self, identity):
        assert identity.verify_token(issue_token("user-1", secret="another-token-secret-0123456789abcdef")) is None

    def test_expired_token(self, identity):
        assert identity.verify_token(issue_token("user-1", exp=int(time.time()) - 60)) is None

    def test_unknown_role(self, identity):
        assert identity.verify_token(issue_token("user-1", "superuser")) is None

    def test_missing_subject(self, identity):
        token = jwt.encode({"role": "viewer"}, TOKEN_SECRET, algorithm="HS256")
        assert identity.verify_token(token) is None

    def test_garbage(self, identity):
        assert identity.verify_token("not-a-token") is None

    def test_secret_required(self):
        with pytest.raises(RuntimeError):
            IdentityService("")
