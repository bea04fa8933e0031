"""
ImgBed Backend — Credential Verification
==========================================

What:  Verifies bearer tokens for administrative and private-upload paths.
How:   PyJWT HS256 (configurable) with a shared secret. The token arrives in
       `Authorization: Bearer <t>` or, for <img> tags that cannot send
       headers, a `?token=<t>` query parameter.
Who:   FastAPI dependencies `require_identity` / `optional_identity`, used
       by the image and upload routes.

Tokens are issued elsewhere (the admin console); `create_access_token`
exists for operators' scripts and the test suite.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Request

from imgbed.config import Settings, settings as default_settings
from imgbed.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class Identity:
    """A verified caller. `subject` is the token's `sub` claim."""
    subject: str
    claims: Dict[str, Any] = field(default_factory=dict)


def extract_token(
    authorization: Optional[str],
    query_token: Optional[str] = None,
) -> Optional[str]:
    """
    Pull the raw token from the Authorization header, else the query string.

    Returns None when neither carries a non-empty value.
    """
    if authorization and authorization[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        token = authorization[len(BEARER_PREFIX):].strip()
        if token:
            return token
    if query_token and query_token.strip():
        return query_token.strip()
    return None


class AuthService:
    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 60 * 24,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    @classmethod
    def from_settings(cls, config: Settings) -> "AuthService":
        return cls(
            secret_key=config.jwt_secret_key,
            algorithm=config.jwt_algorithm,
            expire_minutes=config.jwt_expire_minutes,
        )

    def create_access_token(
        self,
        subject: str,
        expires_delta: Optional[timedelta] = None,
        extra_claims: Optional[Dict[str, Any]] = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        to_encode: Dict[str, Any] = dict(extra_claims or {})
        to_encode.update({
            "sub": subject,
            "iat": now,
            "exp": now + (expires_delta or timedelta(minutes=self.expire_minutes)),
        })
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: Optional[str]) -> Identity:
        """
        Decode and verify a token.

        Raises:
            UnauthorizedError: reason "missing", "expired" or "invalid"
        """
        if not token:
            raise UnauthorizedError(reason="missing")
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("Rejected expired token")
            raise UnauthorizedError(message="Token has expired", reason="expired") from e
        except jwt.InvalidTokenError as e:
            logger.info("Rejected invalid token: %s", e)
            raise UnauthorizedError(message="Token is invalid", reason="invalid") from e

        return Identity(subject=str(payload["sub"]), claims=payload)


# ── FastAPI Dependencies ──────────────────────────────────────────────────


def get_auth_service(request: Request) -> AuthService:
    """The app's AuthService (built in create_app), else one from default settings."""
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService.from_settings(default_settings)
    return service


def _request_token(request: Request) -> Optional[str]:
    return extract_token(
        request.headers.get("Authorization"),
        request.query_params.get("token"),
    )


async def require_identity(request: Request) -> Identity:
    """Dependency: a verified identity or 401."""
    return get_auth_service(request).verify_token(_request_token(request))


async def optional_identity(request: Request) -> Optional[Identity]:
    """
    Dependency: None when no credential is presented.

    A credential that is presented but fails verification is still a 401;
    it never degrades to anonymous access.
    """
    token = _request_token(request)
    if token is None:
        return None
    return get_auth_service(request).verify_token(token)
