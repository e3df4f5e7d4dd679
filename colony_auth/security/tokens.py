"""Utilities for issuing and validating session bearer tokens."""

from __future__ import annotations

import time
from typing import Any

import jwt

from ..config import Settings, get_settings
from ..domain.account import Account


def issue_session_token(
    account: Account, session_id: str, settings: Settings | None = None
) -> tuple[str, int]:
    """Create a signed JWT naming the account that holds an open session.

    Parameters
    ----------
    account:
        Authenticated account; its identifier becomes the `sub` claim.
    session_id:
        Identifier of the session opened by the login, carried as `sid`.
    settings:
        Signing configuration; defaults to the process-wide settings.

    Returns
    -------
    tuple[str, int]
        A tuple containing the encoded JWT string and its TTL (in seconds).

    Notes
    -----
    The token is honoured only while `sid` matches the account's open session;
    liveness is otherwise decided by the auth service's inactivity policy.
    """

    settings = settings or get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": account.account_id,
        "identity": account.identity_key,
        "role": account.role.value,
        "sid": session_id,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_session_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and verify a session JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = settings or get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        options={"require": ["sub", "sid", "exp", "iss"]},
    )
