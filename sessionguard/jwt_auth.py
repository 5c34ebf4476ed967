"""
Bearer Token Helpers & Authentication Guard Decorator.

Reads the ``exp`` claim of a JWT without verifying its signature (the
backend verifies; the client only needs to know when to stop sending
it), and provides a factory that produces a decorator for gating
service-layer callables behind an authenticated session.

Usage::

    from sessionguard.auth import SessionStore
    from sessionguard.jwt_auth import require_auth

    auth_guard = require_auth(session)

    @auth_guard
    async def enable_mfa(...) -> None:
        ...
"""

from __future__ import annotations

import inspect
import time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Optional, ParamSpec, TypeVar

import jwt

from sessionguard.errors import AuthenticationError, TokenMalformed

if TYPE_CHECKING:
    from sessionguard.auth import SessionStore

P = ParamSpec("P")
R = TypeVar("R")


# Signature and registered-claim checks belong to the backend; only the
# structure and the exp claim are read here.
_UNVERIFIED_OPTIONS: dict[str, bool] = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


def decode_expiry(token: str) -> int:
    """Return the ``exp`` claim (epoch seconds) of *token*.

    Raises
    ------
    TokenMalformed
        If PyJWT cannot parse the header or payload segment, or the
        ``exp`` claim is missing or not a number.
    """
    try:
        claims: dict[str, Any] = jwt.decode(token, options=_UNVERIFIED_OPTIONS)
    except jwt.InvalidTokenError as exc:
        raise TokenMalformed(f"Token is not a decodable JWT: {exc}") from exc

    exp = claims.get("exp")
    # bool is an int subclass; a boolean claim is not an expiry.
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise TokenMalformed("Token has no numeric exp claim")
    return int(exp)


def is_token_expired(token: str, now: Optional[float] = None) -> bool:
    """``True`` when the ``exp`` claim of *token* is not after *now*.

    Raises
    ------
    TokenMalformed
        Propagated from :func:`decode_expiry`.
    """
    current = time.time() if now is None else now
    return decode_expiry(token) <= current


def require_auth(session: SessionStore) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Return a decorator that enforces authentication via *session*.

    The returned decorator checks ``session.is_authenticated`` before
    every call to the wrapped function (sync or ``async``).  If no
    bearer token is held, an :class:`AuthenticationError` is raised.
    """

    def _check() -> None:
        if not session.is_authenticated:
            raise AuthenticationError(
                "Authentication required. Please log in before "
                "performing this action."
            )

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                _check()
                return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            _check()
            return func(*args, **kwargs)

        return wrapper

    return decorator
