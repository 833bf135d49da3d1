"""Unit tests for JWT decoding and authentication utilities."""

import time
from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt, get_signing_key

SIGNING_KEY = ec.generate_private_key(ec.SECP256R1())
OTHER_KEY = ec.generate_private_key(ec.SECP256R1())
USER_SUB = "550e8400-e29b-41d4-a716-446655440000"


def create_test_token(
    sub: str | None = USER_SUB,
    email: str | None = "test@example.com",
    app_role: str | None = "customer",
    exp_offset: int = 3600,
    key: Any = SIGNING_KEY,
) -> str:
    """Create an ES256 token shaped like a Supabase access token."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "email": email,
        "role": "authenticated",
        "exp": now + exp_offset,
        "iat": now,
        "aud": "authenticated",
        "iss": "https://test.supabase.co/auth/v1",
    }
    if sub is not None:
        payload["sub"] = sub
    if app_role is not None:
        payload["app_metadata"] = {"provider": "email", "role": app_role}
    return jwt.encode(payload, key, algorithm="ES256")


@pytest.fixture
def signing_key() -> Generator[None, None, None]:
    with patch("src.api.middleware.auth.get_signing_key", return_value=SIGNING_KEY.public_key()):
        yield


@pytest.mark.usefixtures("signing_key")
class TestDecodeJWT:
    """Tests for decode_jwt function."""

    def test_decode_jwt_with_valid_token(self) -> None:
        """Test decode_jwt reads the subject and the application role."""
        payload = decode_jwt(create_test_token())

        assert payload.sub == USER_SUB
        assert payload.email == "test@example.com"
        assert payload.role == "authenticated"
        assert payload.app_role == "customer"

    def test_user_context_prefers_app_role(self) -> None:
        """The application role wins over the database role."""
        user = decode_jwt(create_test_token(app_role="staff")).to_user_context()

        assert str(user.user_id) == USER_SUB
        assert user.role == "staff"

    def test_user_context_without_app_role(self) -> None:
        """Tokens without app_metadata fall back to the database role."""
        user = decode_jwt(create_test_token(app_role=None)).to_user_context()

        assert user.role == "authenticated"

    def test_decode_jwt_with_expired_token(self) -> None:
        """Test decode_jwt raises AuthError for expired token."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token(exp_offset=-3600))

        assert exc_info.value.code == AuthErrorCode.TOKEN_EXPIRED
        assert "expired" in exc_info.value.message.lower()

    def test_decode_jwt_with_invalid_signature(self) -> None:
        """Test decode_jwt rejects a token signed by another key."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token(key=OTHER_KEY))

        assert exc_info.value.code == AuthErrorCode.INVALID_SIGNATURE

    def test_decode_jwt_with_missing_sub(self) -> None:
        """Test decode_jwt requires the sub claim."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token(sub=None))

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN
        assert "sub" in exc_info.value.message

    def test_decode_jwt_with_malformed_token(self) -> None:
        """Test decode_jwt raises AuthError for garbage input."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt("not.a.jwt")

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    def test_decode_jwt_rejects_hs256(self) -> None:
        """Only ES256 tokens are accepted."""
        token = jwt.encode(
            {"sub": USER_SUB, "exp": int(time.time()) + 60, "iat": int(time.time())},
            "shared-secret",
            algorithm="HS256",
        )

        with pytest.raises(AuthError):
            decode_jwt(token)


class TestGetSigningKey:
    """Tests for loading the JWK from settings."""

    @pytest.fixture(autouse=True)
    def clear_cache(self) -> Generator[None, None, None]:
        get_signing_key.cache_clear()
        yield
        get_signing_key.cache_clear()

    @patch("src.api.middleware.auth.get_settings")
    def test_parses_jwk(self, mock_settings: Any) -> None:
        """A public JWK verifies tokens signed by its private key."""
        mock_settings.return_value.supabase_signing_key_jwk = ECAlgorithm.to_jwk(SIGNING_KEY.public_key())

        payload = jwt.decode(
            create_test_token(),
            get_signing_key(),
            algorithms=["ES256"],
            options={"verify_aud": False},
        )

        assert payload["sub"] == USER_SUB

    @patch("src.api.middleware.auth.get_settings")
    def test_invalid_json(self, mock_settings: Any) -> None:
        """A signing key that is not JSON raises AuthError."""
        mock_settings.return_value.supabase_signing_key_jwk = "test-signing-key-jwk"

        with pytest.raises(AuthError) as exc_info:
            get_signing_key()

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    @patch("src.api.middleware.auth.get_settings")
    def test_missing_key(self, mock_settings: Any) -> None:
        """An empty signing key raises AuthError."""
        mock_settings.return_value.supabase_signing_key_jwk = ""

        with pytest.raises(AuthError):
            get_signing_key()
