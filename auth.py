import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="access-token")


def issue_access_token(user_id: int) -> str:
    serializer = _serializer()
    return serializer.dumps({"u": int(user_id), "ts": int(time.time())})


def resolve_user_id(token: str) -> Optional[int]:
    """Return the user id a token was issued for, or None when it is unusable."""
    settings = get_settings()
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=settings.auth_max_age_hours * 3600)
    except BadSignature:
        # SignatureExpired is a BadSignature
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()
