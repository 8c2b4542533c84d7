import asyncio

import pytest
from fastapi import HTTPException
from jose import jwt

from feeledger.core.config import settings
from feeledger.core.security import (
    CurrentUser,
    TokenData,
    create_access_token,
    require_roles,
    verify_token,
)


def _token(role="admin"):
    return create_access_token(
        TokenData(
            user_id="11111111-1111-1111-1111-111111111111",
            role=role,
            email="bursar@example.com",
            full_name="Bursar",
        )
    )


def test_verify_token_roundtrip():
    payload = verify_token(_token("accountant"))
    assert payload.user_id == "11111111-1111-1111-1111-111111111111"
    assert payload.role == "accountant"


def test_verify_token_rejects_other_token_types():
    forged = jwt.encode(
        {"user_id": "u1", "role": "admin", "type": "refresh"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(HTTPException) as exc:
        verify_token(forged)
    assert exc.value.status_code == 401


def test_verify_token_rejects_bad_signature():
    forged = jwt.encode({"user_id": "u1", "role": "admin", "type": "access"}, "wrong", algorithm="HS256")
    with pytest.raises(HTTPException):
        verify_token(forged)


def test_require_roles_blocks_other_roles():
    check = require_roles("admin", "accountant")
    teacher = CurrentUser(user_id="u2", role="teacher")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(check(current_user=teacher))
    assert exc.value.status_code == 403

    accountant = CurrentUser(user_id="u3", role="accountant")
    assert asyncio.run(check(current_user=accountant)) is accountant
