from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from jose import JWTError, jwt
from starlette.requests import Request

from crmhub.core.auth import ANONYMOUS_SUBJECT, decode_token, get_current_user
from crmhub.core.config import get_settings


def _token(claims: dict) -> str:
    settings = get_settings()
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _request(authorization: str | None) -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization else []
    return Request({"type": "http", "method": "GET", "path": "/me", "headers": headers, "query_string": b""})


def test_decode_token_reads_subject_roles_and_email() -> None:
    user = decode_token(_token({"sub": "user-1", "roles": ["sales_rep"], "email": "rep@example.com"}))

    assert user.sub == "user-1"
    assert user.roles == ["sales_rep"]
    assert user.email == "rep@example.com"
    assert not user.is_anonymous


def test_single_role_claim_is_wrapped_in_a_list() -> None:
    assert decode_token(_token({"sub": "user-2", "roles": "support_specialist"})).roles == ["support_specialist"]


def test_token_without_subject_is_rejected() -> None:
    with pytest.raises(JWTError):
        decode_token(_token({"roles": ["sales_rep"]}))


@pytest.mark.parametrize(
    "authorization",
    [
        None,
        "Basic dXNlcjpwYXNz",
        "Bearer not-a-jwt",
        f"Bearer {jwt.encode({'sub': 'user-3'}, 'some-other-secret', algorithm='HS256')}",
    ],
)
def test_missing_or_invalid_tokens_fall_back_to_anonymous(authorization: str | None) -> None:
    user = asyncio.run(get_current_user(_request(authorization)))

    assert user.sub == ANONYMOUS_SUBJECT
    assert user.is_anonymous


def test_expired_token_is_anonymous() -> None:
    expired = _token({"sub": "user-4", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)})

    user = asyncio.run(get_current_user(_request(f"Bearer {expired}")))

    assert user.is_anonymous


def test_valid_token_identifies_the_caller() -> None:
    user = asyncio.run(get_current_user(_request(f"Bearer {_token({'sub': 'user-5', 'roles': ['sales_manager']})}")))

    assert user.sub == "user-5"
    assert user.roles == ["sales_manager"]
