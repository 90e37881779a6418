"""
Authentication for the Agent API.

Two schemes:
- Session endpoints (/api/agent/*): JWT bearer tokens carrying tenant and
  user claims. Supports symmetric (HS*) and asymmetric (RS*, ES*, PS*)
  algorithms.
- Stateless endpoint (/api/v1/chat): a shared API key sent as
  `Authorization: Bearer <API_SECRET_KEY>`, compared in constant time.

Both fail closed: a missing key or secret on the server rejects the request.

Environment Variables:
- JWT_SECRET: Secret key for HS* algorithms
- JWT_PUBLIC_KEY: Public key for RS*/ES*/PS* algorithms (PEM or file path)
- JWT_ALGORITHM: Algorithm to use (default: HS256)
- JWT_ISSUER / JWT_AUDIENCE: Expected iss / aud claims (optional)
- JWT_CLOCK_SKEW_SECONDS: Clock skew tolerance (default: 30)
- REQUIRE_AUTH: Set to false to disable auth in development (default: true)
- API_SECRET_KEY: Shared key for the stateless endpoint
"""

from __future__ import annotations

import logging
import os
import secrets
from typing import Optional, Union

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel

from ..domain.entities import UserContext

logger = logging.getLogger(__name__)


class JWTConfig:
    """JWT configuration from environment variables."""

    SECRET: Optional[str] = os.getenv("JWT_SECRET")
    PUBLIC_KEY: Optional[str] = os.getenv("JWT_PUBLIC_KEY")
    ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ISSUER: Optional[str] = os.getenv("JWT_ISSUER")
    AUDIENCE: Optional[str] = os.getenv("JWT_AUDIENCE")
    REQUIRE_AUTH: bool = os.getenv("REQUIRE_AUTH", "true").lower() == "true"
    CLOCK_SKEW_SECONDS: int = int(os.getenv("JWT_CLOCK_SKEW_SECONDS", "30"))

    TENANT_ID_CLAIM: str = os.getenv("JWT_TENANT_ID_CLAIM", "tenant_id")
    USER_ID_CLAIM: str = os.getenv("JWT_USER_ID_CLAIM", "sub")
    SESSION_ID_CLAIM: str = os.getenv("JWT_SESSION_ID_CLAIM", "session_id")

    # Explicit allowlist; 'none' is never accepted
    ALLOWED_ALGORITHMS: frozenset[str] = frozenset({
        "HS256", "HS384", "HS512",
        "RS256", "RS384", "RS512",
        "ES256", "ES384", "ES512",
        "PS256", "PS384", "PS512",
    })

    SYMMETRIC_ALGORITHMS: frozenset[str] = frozenset({"HS256", "HS384", "HS512"})

    _public_key_cache: Optional[str] = None

    @classmethod
    def validate_algorithm(cls) -> str:
        """Validate that the configured algorithm is in the allowlist.

        Raises:
            ValueError: If algorithm is not allowed
        """
        alg = cls.ALGORITHM.upper()

        if alg == "NONE":
            raise ValueError("JWT algorithm 'none' is not allowed")

        if alg not in cls.ALLOWED_ALGORITHMS:
            raise ValueError(
                f"JWT algorithm '{cls.ALGORITHM}' is not allowed. "
                f"Allowed algorithms: {sorted(cls.ALLOWED_ALGORITHMS)}"
            )

        return alg

    @classmethod
    def is_symmetric_algorithm(cls) -> bool:
        return cls.ALGORITHM.upper() in cls.SYMMETRIC_ALGORITHMS

    @classmethod
    def get_verification_key(cls) -> str:
        """Return the secret (HS*) or PEM public key (RS*/ES*/PS*).

        Raises:
            ValueError: If the required key is not configured
        """
        if cls.is_symmetric_algorithm():
            if not cls.SECRET:
                raise ValueError(f"JWT_SECRET required for symmetric algorithm {cls.ALGORITHM}")
            return cls.SECRET

        if cls._public_key_cache:
            return cls._public_key_cache

        if not cls.PUBLIC_KEY:
            raise ValueError(
                f"JWT_PUBLIC_KEY required for asymmetric algorithm {cls.ALGORITHM}"
            )

        public_key = cls.PUBLIC_KEY
        if os.path.isfile(public_key):
            logger.info(f"Loading JWT public key from file: {public_key}")
            with open(public_key, "r") as f:
                public_key = f.read()

        if not public_key.strip().startswith("-----BEGIN"):
            raise ValueError("JWT_PUBLIC_KEY must be PEM format (starting with '-----BEGIN')")

        cls._public_key_cache = public_key
        return public_key


class TokenPayload(BaseModel):
    """Validated JWT payload."""

    tenant_id: str
    user_id: str
    session_id: Optional[str] = None

    iss: Optional[str] = None
    aud: Optional[Union[str, list[str]]] = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    nbf: Optional[int] = None


class AuthenticationError(HTTPException):
    """Authentication failure exception."""

    def __init__(self, detail: str, headers: Optional[dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers=headers or {"WWW-Authenticate": "Bearer"},
        )


def _check_config() -> None:
    """Verify JWT configuration.

    Raises:
        HTTPException: 500 if auth is required but misconfigured
    """
    if not JWTConfig.REQUIRE_AUTH:
        logger.warning("REQUIRE_AUTH=false - authentication disabled. Never use this in production!")
        return

    try:
        JWTConfig.validate_algorithm()
        JWTConfig.get_verification_key()
    except ValueError as e:
        logger.error(f"JWT configuration error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server authentication not configured",
        )


def _extract_token(authorization: Optional[str]) -> str:
    """Extract the token from an `Authorization: Bearer <token>` header.

    Raises:
        AuthenticationError: If the header is missing or malformed
    """
    if not authorization:
        raise AuthenticationError("Authorization header required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid authorization header format. Expected: Bearer <token>")

    return parts[1]


def _validate_token(token: str) -> TokenPayload:
    """Validate a JWT and extract its payload.

    Raises:
        AuthenticationError: If the token is invalid
    """
    options = {
        "verify_signature": True,
        "verify_exp": True,
        "verify_nbf": True,
        "verify_iat": True,
        "require": ["exp"],
    }
    if JWTConfig.ISSUER:
        options["verify_iss"] = True
    if JWTConfig.AUDIENCE:
        options["verify_aud"] = True

    try:
        payload = jwt.decode(
            token,
            JWTConfig.get_verification_key(),
            algorithms=[JWTConfig.validate_algorithm()],
            options=options,
            issuer=JWTConfig.ISSUER,
            audience=JWTConfig.AUDIENCE,
            leeway=JWTConfig.CLOCK_SKEW_SECONDS,
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT expired")
        raise AuthenticationError("Token has expired")
    except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
        logger.warning(f"JWT claim error: {e}")
        raise AuthenticationError("Invalid token claims")
    except InvalidTokenError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise AuthenticationError("Invalid token")

    tenant_id = payload.get(JWTConfig.TENANT_ID_CLAIM)
    user_id = payload.get(JWTConfig.USER_ID_CLAIM)

    if not tenant_id:
        logger.warning(f"Missing {JWTConfig.TENANT_ID_CLAIM} claim in token")
        raise AuthenticationError(f"Token missing required claim: {JWTConfig.TENANT_ID_CLAIM}")

    if not user_id:
        logger.warning(f"Missing {JWTConfig.USER_ID_CLAIM} claim in token")
        raise AuthenticationError(f"Token missing required claim: {JWTConfig.USER_ID_CLAIM}")

    return TokenPayload(
        tenant_id=str(tenant_id),
        user_id=str(user_id),
        session_id=payload.get(JWTConfig.SESSION_ID_CLAIM),
        iss=payload.get("iss"),
        aud=payload.get("aud"),
        exp=payload.get("exp"),
        iat=payload.get("iat"),
        nbf=payload.get("nbf"),
    )


async def validate_jwt_token(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> TokenPayload:
    """FastAPI dependency for JWT validation.

    Raises:
        AuthenticationError: If authentication fails
    """
    _check_config()

    if not JWTConfig.REQUIRE_AUTH:
        return TokenPayload(tenant_id="dev-tenant", user_id="dev-user", session_id="dev-session")

    return _validate_token(_extract_token(authorization))


def get_user_context_jwt(
    token_payload: TokenPayload = Depends(validate_jwt_token),
) -> UserContext:
    """Build the user context from a validated JWT."""
    return UserContext(
        tenant_id=token_payload.tenant_id,
        user_id=token_payload.user_id,
        session_id=token_payload.session_id,
    )


# =============================================================================
# Shared API key (stateless endpoint)
# =============================================================================


def _get_api_key() -> Optional[str]:
    return os.getenv("API_SECRET_KEY")


async def verify_api_key(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> bool:
    """Verify `Authorization: Bearer <API_SECRET_KEY>`.

    Fail-closed: if API_SECRET_KEY is not set the request is rejected
    (unless REQUIRE_AUTH=false in development).

    Raises:
        HTTPException: 401 if the key is missing or wrong, 500 if unset
    """
    if not JWTConfig.REQUIRE_AUTH:
        logger.warning("REQUIRE_AUTH=false - API key check disabled. Only use this in development!")
        return True

    expected_key = _get_api_key()
    if not expected_key:
        logger.error("API_SECRET_KEY not set - rejecting request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: API_SECRET_KEY not set",
        )

    api_key = _extract_token(authorization)

    if not secrets.compare_digest(api_key.encode("utf-8"), expected_key.encode("utf-8")):
        raise AuthenticationError("Invalid API key")

    return True
