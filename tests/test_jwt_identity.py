from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from adapters.jwt_identity import JWTIdentityVerifier
from core.errors import IdentityError, TokenExpiredError


def test_issue_and_verify() -> None:
    verifier = JWTIdentityVerifier("secret")
    token = verifier.issue("user-1")
    assert verifier.verify(token) == "user-1"


def test_wrong_secret_is_rejected() -> None:
    token = JWTIdentityVerifier("secret").issue("user-1")
    with pytest.raises(IdentityError):
        JWTIdentityVerifier("other").verify(token)


def test_expired_token_is_reported() -> None:
    verifier = JWTIdentityVerifier("secret")
    token = verifier.issue("user-1", expires_in=timedelta(seconds=-10))
    with pytest.raises(TokenExpiredError) as excinfo:
        verifier.verify(token)
    assert excinfo.value.code == "jwt_expired"


def test_token_without_user_claim_is_rejected() -> None:
    token = jwt.encode({"sub": "user-1"}, "secret", algorithm="HS256")
    with pytest.raises(IdentityError):
        JWTIdentityVerifier("secret").verify(token)
