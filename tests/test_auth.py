"""Tests for token verification."""

import uuid
import pytest
from datetime import timedelta
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from auth import (
    InvalidTokenError,
    SessionExpiredError,
    create_access_token,
    decode_token,
    get_current_user
)

def test_round_trip():
    user_id = uuid.uuid4()
    token = create_access_token(user_id)
    assert decode_token(token) == user_id

def test_expired_token():
    token = create_access_token(uuid.uuid4(), expires_in=timedelta(seconds=-5))
    with pytest.raises(SessionExpiredError):
        decode_token(token)

def test_wrong_secret():
    token = create_access_token(uuid.uuid4(), secret='another-secret')
    with pytest.raises(InvalidTokenError):
        decode_token(token)

def test_subject_must_be_a_user_id():
    token = create_access_token('alice')
    with pytest.raises(InvalidTokenError):
        decode_token(token)

@pytest.mark.asyncio
async def test_dependency_maps_failures_to_401():
    user_id = uuid.uuid4()
    good = HTTPAuthorizationCredentials(scheme='Bearer', credentials=create_access_token(user_id))
    assert await get_current_user(good) == user_id

    bad = HTTPAuthorizationCredentials(scheme='Bearer', credentials='garbage')
    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(bad)
    assert exc_info.value.status_code == 401
