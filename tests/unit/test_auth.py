import pytest
from datetime import datetime, timedelta

import jwt

from expenseflow.api.auth import create_tokens, decode_token, hash_password, verify_password
from expenseflow.config import settings
from expenseflow.errors import AuthenticationFailed


def test_tokens_round_trip():
    tokens = create_tokens("user-1")
    assert tokens["token_type"] == "bearer"
    assert decode_token(tokens["access_token"], settings.SECRET_KEY) == "user-1"
    assert decode_token(tokens["refresh_token"], settings.REFRESH_SECRET_KEY, prefix="REFRESH_") == "user-1"


def test_access_token_is_not_a_refresh_token():
    tokens = create_tokens("user-1")
    with pytest.raises(AuthenticationFailed) as exc:
        decode_token(tokens["access_token"], settings.REFRESH_SECRET_KEY, prefix="REFRESH_")
    assert exc.value.code == "INVALID_REFRESH_TOKEN"


def test_expired_token():
    past = datetime.utcnow() - timedelta(hours=2)
    token = jwt.encode({"sub": "user-1", "iat": past, "exp": past + timedelta(minutes=1)},
                       settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(AuthenticationFailed) as exc:
        decode_token(token, settings.SECRET_KEY)
    assert exc.value.code == "TOKEN_EXPIRED"


def test_garbage_token():
    with pytest.raises(AuthenticationFailed) as exc:
        decode_token("not-a-jwt", settings.SECRET_KEY)
    assert exc.value.code == "INVALID_TOKEN"


def test_password_hashing(employee):
    employee.password_hash = hash_password("s3cret!")
    assert verify_password(employee, "s3cret!")
    assert not verify_password(employee, "wrong")
