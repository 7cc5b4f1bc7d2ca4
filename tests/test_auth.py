import uuid

import pytest
from jose import JWTError

from timegate.core.auth.security import create_access_token, decode_access_token


def test_access_token_roundtrip():
    user_id = uuid.uuid4()
    token = create_access_token(user_id)
    payload = decode_access_token(token)
    assert payload["sub"] == str(user_id)
    assert payload["type"] == "access"


def test_expired_token_rejected():
    token = create_access_token(uuid.uuid4(), expires_minutes=-1)
    with pytest.raises(JWTError):
        decode_access_token(token)


def test_token_signed_with_other_secret_rejected():
    from jose import jwt
    token = jwt.encode({"sub": str(uuid.uuid4()), "type": "access"}, "another-secret", algorithm="HS256")
    with pytest.raises(JWTError):
        decode_access_token(token)


def test_refresh_style_token_rejected():
    from jose import jwt
    from timegate.settings import get_settings
    settings = get_settings()
    token = jwt.encode({"sub": str(uuid.uuid4()), "type": "refresh"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(JWTError):
        decode_access_token(token)
def test_principal_from_inactive_user():
    from timegate.core.rbac.models import User
    from timegate.core.rbac.permissions import SystemRole
    from timegate.core.rbac.principal import Principal

    user = User(id=uuid.uuid4(), email="a@timegate.io", system_role="admin", status="suspended", is_deleted=False)
    principal = Principal.from_user(user)
    assert principal.system_role == SystemRole.ADMIN
    assert principal.is_active is False
