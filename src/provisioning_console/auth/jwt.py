"""
provisioning_console.auth.jwt

JWT issuing and validation helpers.

Responsibilities:
- Issue and validate console API tokens (HS256, strict registered claims).
- Read claims of identity-provider access tokens without verifying them. The
  console never holds the provider's signing key; it only needs `sub`/`exp`
  to decide whether a snapshot can be reinstated or must be refreshed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str


class JwtValidationError(Exception):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: list[str],
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": roles,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={
                "require": ["exp", "iat", "iss", "aud", "sub"],
            },
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


def read_unverified_claims(token: str) -> dict[str, Any]:
    """
    Claims of a provider-issued token, signature and expiry unchecked.
    Returns an empty dict for anything that is not a decodable JWT.
    """

    try:
        return jwt.decode(token, options={"verify_signature": False})
    except InvalidTokenError:
        return {}


# --- Module Notes -----------------------------------------------------------
# Provider tokens are always validated by the provider itself (GET /auth/v1/user)
# before the console reinstates them; unverified claims only steer that choice.
