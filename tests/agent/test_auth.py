"""
Tests for Agent API authentication.

Covers JWT validation for the session endpoints and the shared API key
used by the stateless /api/v1/chat endpoint.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import pytest
from fastapi import HTTPException

from src.cortex.agent.api.auth import (
    AuthenticationError,
    JWTConfig,
    TokenPayload,
    _extract_token,
    _validate_token,
    get_user_context_jwt,
    validate_jwt_token,
    verify_api_key,
)
from src.cortex.agent.domain.entities import UserContext


@pytest.fixture
def jwt_secret():
    """Test JWT secret."""
    return "test-secret-key-for-testing-only-0123456789"


@pytest.fixture
def valid_payload():
    """Valid JWT payload."""
    now = datetime.now(timezone.utc)
    return {
        "sub": "user123",
        "tenant_id": "tenant456",
        "session_id": "session789",
        "iss": "test-issuer",
        "aud": "test-audience",
        "exp": int((now + timedelta(hours=1)).timestamp()),
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
    }


@pytest.fixture
def valid_token(jwt_secret, valid_payload):
    return jwt.encode(valid_payload, jwt_secret, algorithm="HS256")


@pytest.fixture
def jwt_env(jwt_secret):
    """Patch JWTConfig for a configured HS256 deployment."""
    with patch.object(JWTConfig, "SECRET", jwt_secret), \
         patch.object(JWTConfig, "ALGORITHM", "HS256"), \
         patch.object(JWTConfig, "REQUIRE_AUTH", True), \
         patch.object(JWTConfig, "ISSUER", "test-issuer"), \
         patch.object(JWTConfig, "AUDIENCE", "test-audience"):
        yield


class TestExtractToken:
    """Tests for token extraction from Authorization header."""

    def test_extract_valid_bearer_token(self):
        assert _extract_token("Bearer abc123token") == "abc123token"

    def test_extract_bearer_case_insensitive(self):
        assert _extract_token("bearer abc123token") == "abc123token"

    def test_extract_missing_bearer_prefix(self):
        with pytest.raises(AuthenticationError) as exc_info:
            _extract_token("abc123token")
        assert "Invalid authorization header format" in str(exc_info.value.detail)

    def test_extract_wrong_auth_type(self):
        with pytest.raises(AuthenticationError) as exc_info:
            _extract_token("Basic abc123token")
        assert "Invalid authorization header format" in str(exc_info.value.detail)

    def test_extract_empty_token(self):
        with pytest.raises(AuthenticationError) as exc_info:
            _extract_token("")
        assert "Authorization header required" in str(exc_info.value.detail)


class TestValidateToken:
    """Tests for JWT validation."""

    def test_validate_valid_token(self, jwt_env, valid_token):
        result = _validate_token(valid_token)

        assert isinstance(result, TokenPayload)
        assert result.user_id == "user123"
        assert result.tenant_id == "tenant456"
        assert result.session_id == "session789"

    def test_validate_expired_token(self, jwt_env, jwt_secret, valid_payload):
        payload = dict(valid_payload, exp=int((datetime.now(timezone.utc) - timedelta(hours=1)).timestamp()))
        token = jwt.encode(payload, jwt_secret, algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            _validate_token(token)
        assert "expired" in str(exc_info.value.detail).lower()

    def test_validate_invalid_signature(self, jwt_env, valid_payload):
        token = jwt.encode(valid_payload, "another-secret-key-that-is-long-enough", algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            _validate_token(token)
        assert exc_info.value.detail == "Invalid token"

    def test_validate_wrong_audience(self, jwt_env, jwt_secret, valid_payload):
        token = jwt.encode(dict(valid_payload, aud="someone-else"), jwt_secret, algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            _validate_token(token)
        assert exc_info.value.detail == "Invalid token claims"

    def test_validate_missing_tenant_id(self, jwt_env, jwt_secret, valid_payload):
        payload = dict(valid_payload)
        del payload["tenant_id"]
        token = jwt.encode(payload, jwt_secret, algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            _validate_token(token)
        assert "tenant_id" in str(exc_info.value.detail)

    def test_validate_missing_user_id(self, jwt_env, jwt_secret, valid_payload):
        payload = dict(valid_payload)
        del payload["sub"]
        token = jwt.encode(payload, jwt_secret, algorithm="HS256")

        with pytest.raises(AuthenticationError) as exc_info:
            _validate_token(token)
        assert "sub" in str(exc_info.value.detail)

    def test_validate_malformed_token(self, jwt_env):
        with pytest.raises(AuthenticationError):
            _validate_token("not.a.valid.jwt")


class TestAlgorithmConfig:
    """Tests for the algorithm allowlist."""

    def test_none_algorithm_rejected(self):
        with patch.object(JWTConfig, "ALGORITHM", "none"):
            with pytest.raises(ValueError, match="not allowed"):
                JWTConfig.validate_algorithm()

    def test_unknown_algorithm_rejected(self):
        with patch.object(JWTConfig, "ALGORITHM", "HS1"):
            with pytest.raises(ValueError, match="Allowed algorithms"):
                JWTConfig.validate_algorithm()

    @pytest.mark.asyncio
    async def test_missing_secret_is_server_error(self):
        with patch.object(JWTConfig, "REQUIRE_AUTH", True), \
             patch.object(JWTConfig, "ALGORITHM", "HS256"), \
             patch.object(JWTConfig, "SECRET", None):
            with pytest.raises(HTTPException) as exc_info:
                await validate_jwt_token("Bearer whatever")
        assert exc_info.value.status_code == 500


class TestDevModeBypass:
    """Tests for development mode authentication bypass."""

    @pytest.mark.asyncio
    async def test_dev_mode_bypasses_auth(self):
        with patch.object(JWTConfig, "REQUIRE_AUTH", False):
            result = await validate_jwt_token("Bearer invalid")

        assert result.tenant_id == "dev-tenant"
        assert result.user_id == "dev-user"

    @pytest.mark.asyncio
    async def test_prod_mode_requires_valid_jwt(self, jwt_env):
        with pytest.raises(AuthenticationError):
            await validate_jwt_token("Bearer invalid")


class TestUserContextExtraction:
    """Tests for UserContext extraction from JWT."""

    @pytest.mark.asyncio
    async def test_user_context_from_valid_jwt(self, jwt_env, valid_token):
        payload = await validate_jwt_token(f"Bearer {valid_token}")
        context = get_user_context_jwt(payload)

        assert isinstance(context, UserContext)
        assert context.tenant_id == "tenant456"
        assert context.user_id == "user123"
        assert context.session_id == "session789"


class TestClockSkewTolerance:
    """Tests for clock skew tolerance."""

    def test_slightly_future_nbf_accepted(self, jwt_env, jwt_secret, valid_payload):
        payload = dict(valid_payload, nbf=int((datetime.now(timezone.utc) + timedelta(seconds=20)).timestamp()))
        token = jwt.encode(payload, jwt_secret, algorithm="HS256")

        with patch.object(JWTConfig, "CLOCK_SKEW_SECONDS", 30):
            assert _validate_token(token).user_id == "user123"

    def test_far_future_nbf_rejected(self, jwt_env, jwt_secret, valid_payload):
        payload = dict(valid_payload, nbf=int((datetime.now(timezone.utc) + timedelta(minutes=2)).timestamp()))
        token = jwt.encode(payload, jwt_secret, algorithm="HS256")

        with patch.object(JWTConfig, "CLOCK_SKEW_SECONDS", 30):
            with pytest.raises(AuthenticationError):
                _validate_token(token)


class TestApiKey:
    """Tests for the shared API key on the stateless endpoint."""

    @pytest.mark.asyncio
    async def test_correct_key(self, monkeypatch):
        monkeypatch.setenv("API_SECRET_KEY", "k-123")
        with patch.object(JWTConfig, "REQUIRE_AUTH", True):
            assert await verify_api_key("Bearer k-123") is True

    @pytest.mark.asyncio
    async def test_wrong_key(self, monkeypatch):
        monkeypatch.setenv("API_SECRET_KEY", "k-123")
        with patch.object(JWTConfig, "REQUIRE_AUTH", True):
            with pytest.raises(AuthenticationError) as exc_info:
                await verify_api_key("Bearer nope")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_header(self, monkeypatch):
        monkeypatch.setenv("API_SECRET_KEY", "k-123")
        with patch.object(JWTConfig, "REQUIRE_AUTH", True):
            with pytest.raises(AuthenticationError):
                await verify_api_key(None)

    @pytest.mark.asyncio
    async def test_unset_key_fails_closed(self, monkeypatch):
        monkeypatch.delenv("API_SECRET_KEY", raising=False)
        with patch.object(JWTConfig, "REQUIRE_AUTH", True):
            with pytest.raises(HTTPException) as exc_info:
                await verify_api_key("Bearer anything")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_dev_mode_skips_check(self, monkeypatch):
        monkeypatch.delenv("API_SECRET_KEY", raising=False)
        with patch.object(JWTConfig, "REQUIRE_AUTH", False):
            assert await verify_api_key(None) is True
