"""JWT identity adapter.

Connections arrive with a token issued by the HTTP login flow; this adapter
turns it into the user id the core trusts. The core itself never sees
credentials.
"""

from __future__ import annotations

from datetime import timedelta

import jwt

from core.errors import IdentityError, TokenExpiredError
from core.models import utcnow

USER_CLAIM = "userId"


class JWTIdentityVerifier:
    """Verify HS256 (or configured algorithm) tokens carrying a userId claim."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("A JWT secret is required")
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: str) -> str:
        """Return the user id encoded in a valid token."""

        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": True},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("Token has expired") from exc
        except jwt.PyJWTError as exc:
            raise IdentityError(f"Invalid authentication token: {exc}") from exc

        user_id = decoded.get(USER_CLAIM)
        if not isinstance(user_id, str) or not user_id:
            raise IdentityError(f"Token has no {USER_CLAIM} claim")
        return user_id

    def issue(self, user_id: str, expires_in: timedelta = timedelta(days=7)) -> str:
        """Mint a token for development clients."""

        now = utcnow()
        payload = {USER_CLAIM: user_id, "iat": now, "exp": now + expires_in}
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)
