"""Tests for the authentication gate."""

from datetime import timedelta

import pytest
from jose import jwt

from weather_push.services.auth import AuthGate, create_access_token
from weather_push.services.errors import (
    AuthError,
    ExpiredToken,
    MalformedToken,
    MissingConfiguration,
)

SECRET = "test-secret"  # noqa: S105


class TestVerify:
    """Tests for AuthGate.verify."""

    def test_valid_token_returns_claims(self, gate, make_token):
        """A valid token yields the caller's identity."""
        claims = gate.verify(make_token("42", "alice"))

        assert claims.user_id == "42"
        assert claims.username == "alice"
        assert claims.issued_at is not None
        assert claims.expires_at > claims.issued_at

    def test_numeric_user_id_is_normalized_to_string(self, gate):
        """Tokens carrying an integer userId compare equal to string ids."""
        token = jwt.encode({"userId": 42, "username": "alice"}, SECRET, algorithm="HS256")

        assert gate.verify(token).user_id == "42"

    def test_expired_token(self, gate, make_token):
        """A token whose expiry has passed is rejected as expired."""
        token = make_token("42", expires_in=timedelta(seconds=-10))

        with pytest.raises(ExpiredToken):
            gate.verify(token)

    def test_manipulated_signature(self, gate, make_token):
        """Changing the signature invalidates the token."""
        token = make_token("42")
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[::-1]}"

        with pytest.raises(MalformedToken):
            gate.verify(tampered)

    def test_token_signed_with_other_secret(self, gate):
        """Tokens signed with a different secret are rejected."""
        token = create_access_token("42", "alice", secret="other-secret")

        with pytest.raises(MalformedToken):
            gate.verify(token)

    def test_garbage_token(self, gate):
        """Tokens that are not JWTs are malformed."""
        with pytest.raises(MalformedToken):
            gate.verify("not-a-jwt")

    def test_missing_token(self, gate):
        """A missing token is a malformed token."""
        with pytest.raises(MalformedToken):
            gate.verify(None)

    def test_missing_user_id_claim(self, gate):
        """Tokens without a userId claim are malformed."""
        token = jwt.encode({"username": "alice"}, SECRET, algorithm="HS256")

        with pytest.raises(MalformedToken):
            gate.verify(token)

    def test_missing_secret(self, make_token):
        """Verification without a configured secret fails as misconfiguration."""
        gate = AuthGate(secret="")

        with pytest.raises(MissingConfiguration):
            gate.verify(make_token("42"))

    def test_all_failures_are_auth_errors(self):
        """Every verification failure is an AuthError with a 401 status."""
        for error in (MissingConfiguration, ExpiredToken, MalformedToken):
            assert issubclass(error, AuthError)
            assert error.status_code == 401


class TestCreateAccessToken:
    """Tests for token issuance."""

    def test_round_trip_claims(self):
        """Issued tokens carry userId, username, iat and exp."""
        token = create_access_token("7", "bob", secret=SECRET)
        payload = jwt.decode(token, SECRET, algorithms=["HS256"])

        assert payload["userId"] == "7"
        assert payload["username"] == "bob"
        assert payload["exp"] - payload["iat"] == 24 * 60 * 60

    def test_requires_secret(self):
        """Issuing a token without a secret fails."""
        with pytest.raises(MissingConfiguration):
            create_access_token("7", "bob", secret="")
