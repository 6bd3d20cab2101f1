from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import Settings, get_settings

CSRF_MAX_AGE_SECS = 2 * 3600


def _serializer(settings: Optional[Settings] = None) -> URLSafeTimedSerializer:
    settings = settings or get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="csrf-token")


def generate_csrf_token(user_id: str, settings: Optional[Settings] = None) -> str:
    """Token tied to one user; expiry is carried in the signed timestamp."""
    return _serializer(settings).dumps({"u": user_id})


def validate_csrf_token(
    token: Optional[str],
    user_id: str,
    max_age_secs: int = CSRF_MAX_AGE_SECS,
    settings: Optional[Settings] = None,
) -> bool:
    if not token:
        return False
    try:
        data = _serializer(settings).loads(token, max_age=max_age_secs)
    except BadSignature:
        # SignatureExpired is a BadSignature too
        return False
    return isinstance(data, dict) and data.get("u") == user_id
