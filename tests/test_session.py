"""Tests for accounts, tokens and identity change notifications."""

from datetime import timedelta

import pytest

from database import MemoryDocumentStore
from errors import AuthError, ValidationError
from schemas import SignupRequest
from session import Identity, SessionManager


def signup(**overrides):
    data = {
        "name": "Ana Lima",
        "email": "Ana@MobileHub.dev",
        "password": "secret1",
        "confirm_password": "secret1",
        "phone": "555-0100",
        "role": "customer",
    }
    data.update(overrides)
    return SignupRequest(**data)


@pytest.fixture
def session():
    return SessionManager(MemoryDocumentStore(), secret_key="test-secret")


class TestSignUp:
    def test_creates_user_document_and_signs_in(self, session):
        changes = []
        session.subscribe(changes.append)
        token = session.sign_up(signup())
        identity = session.current_identity()
        assert identity.email == "ana@mobilehub.dev"
        assert changes == [identity]
        assert session.token == token
        user = session.store.get("users", identity.uid)
        assert user["cart"] == [] and user["wishlist"] == []
        assert user["role"] == "customer"
        assert user["password_hash"] != "secret1"

    @pytest.mark.parametrize("overrides,message", [
        ({"phone": ""}, "Please fill in all required fields"),
        ({"role": ""}, "Please fill in all required fields"),
        ({"password": "abc", "confirm_password": "abc"}, "Password must be at least 6 characters"),
        ({"confirm_password": "secret2"}, "Passwords do not match"),
        ({"email": "not-an-email"}, "Please enter a valid email address"),
        ({"role": "superuser"}, "Role must be one of: customer, admin"),
    ])
    def test_validation(self, session, overrides, message):
        with pytest.raises(ValidationError) as exc:
            session.sign_up(signup(**overrides))
        assert exc.value.message == message
        assert session.store.query("users") == []

    def test_duplicate_email(self, session):
        session.sign_up(signup())
        with pytest.raises(AuthError) as exc:
            session.sign_up(signup(email="ana@mobilehub.dev"))
        assert exc.value.code == "auth/email-already-in-use"


class TestSignIn:
    def test_sign_in_and_out_notify(self, session):
        session.sign_up(signup())
        session.sign_out()
        changes = []
        unsubscribe = session.subscribe(changes.append)
        session.sign_in("ana@mobilehub.dev", "secret1")
        session.sign_out()
        unsubscribe()
        session.sign_in("ana@mobilehub.dev", "secret1")
        assert [c.email if c else None for c in changes] == ["ana@mobilehub.dev", None]

    def test_unknown_email(self, session):
        with pytest.raises(AuthError) as exc:
            session.sign_in("nobody@mobilehub.dev", "secret1")
        assert exc.value.code == "auth/user-not-found"

    def test_wrong_password(self, session):
        session.sign_up(signup())
        with pytest.raises(AuthError) as exc:
            session.sign_in("ana@mobilehub.dev", "wrong-pass")
        assert exc.value.code == "auth/wrong-password"

    def test_missing_fields(self, session):
        with pytest.raises(ValidationError):
            session.sign_in("", "")


class TestTokens:
    def test_token_round_trip(self, session):
        identity = Identity(uid="u1", email="ana@mobilehub.dev")
        token = session.create_access_token(identity)
        assert session.identity_from_token(token) == identity

    def test_expired_token(self, session):
        identity = Identity(uid="u1", email="ana@mobilehub.dev")
        token = session.create_access_token(identity, expires_delta=timedelta(minutes=-1))
        with pytest.raises(AuthError):
            session.identity_from_token(token)

    def test_token_from_other_secret(self, session):
        other = SessionManager(session.store, secret_key="another-secret")
        token = other.create_access_token(Identity(uid="u1", email="a@mobilehub.dev"))
        with pytest.raises(AuthError) as exc:
            session.identity_from_token(token)
        assert exc.value.code == "auth/invalid-token"


class TestProfile:
    def test_load_profile_hides_password_hash(self, session):
        session.sign_up(signup())
        profile = session.load_profile(session.current_identity())
        assert "password_hash" not in profile
        assert profile["name"] == "Ana Lima"

    def test_update_profile(self, session):
        session.sign_up(signup())
        profile = session.update_profile(session.current_identity(), {"address": "1 Main St"})
        assert profile["address"] == "1 Main St"

    def test_protected_fields(self, session):
        session.sign_up(signup())
        with pytest.raises(ValidationError):
            session.update_profile(session.current_identity(), {"role": "admin"})

    def test_user_role(self, session):
        assert session.user_role(None) is None
        session.store.set("users", "u1", {"email": "x@mobilehub.dev"})
        assert session.user_role(Identity(uid="u1", email="x@mobilehub.dev")) == "customer"
        session.store.set("users", "u2", {"role": "admin"})
        assert session.user_role(Identity(uid="u2", email="y@mobilehub.dev")) == "admin"
