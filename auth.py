import hashlib
import hmac
import logging
import os
from functools import lru_cache
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models import User
from schemas import ProfileUpdateIn
from services import UserService

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "userId"
SESSION_MAX_AGE_SECS = 60 * 60 * 24 * 7

PBKDF2_ITERATIONS = 200_000
_HASH_SCHEME = "pbkdf2_sha256"


class InvalidCredentials(ValueError):
    pass


class EmailInUse(ValueError):
    pass


class UserNotFound(ValueError):
    pass


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    if salt is None:
        salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS
    )
    return f"{_HASH_SCHEME}${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
        if scheme != _HASH_SCHEME:
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(candidate, expected)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password(os.urandom(16).hex())


def _serializer(settings: Optional[Settings] = None) -> URLSafeSerializer:
    settings = settings or get_settings()
    return URLSafeSerializer(settings.session_secret, salt="session-cookie")


def issue_session_token(user_id: str, settings: Optional[Settings] = None) -> str:
    return _serializer(settings).dumps(user_id)


def read_session_token(
    token: Optional[str], settings: Optional[Settings] = None
) -> Optional[str]:
    if not token:
        return None
    try:
        user_id = _serializer(settings).loads(token)
    except BadSignature:
        logger.info("session_rejected: reason=bad_signature")
        return None
    return user_id if isinstance(user_id, str) else None


def session_cookie_options(settings: Optional[Settings] = None) -> dict[str, object]:
    settings = settings or get_settings()
    return {
        "httponly": True,
        "secure": settings.is_production,
        "max_age": SESSION_MAX_AGE_SECS,
        "path": "/",
        "samesite": "lax",
    }


class AuthService:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.users = UserService(session)

    def login(self, email: str, password: str) -> User:
        user = self.users.find_by_email(email)
        # unknown emails still run one PBKDF2 verification
        encoded = user.password_hash if user is not None else _dummy_hash()
        if not verify_password(password, encoded) or user is None:
            logger.info("login_failed: reason=invalid_credentials")
            raise InvalidCredentials("Invalid email or password")
        logger.info(f"login: user_id={user.id}")
        return user

    def signup(self, name: str, email: str, password: str) -> User:
        if self.users.find_by_email(email) is not None:
            raise EmailInUse("Email already in use")
        user = self.users.create(name, email, hash_password(password))
        logger.info(f"signup: user_id={user.id}")
        return user

    def current_user(self, token: Optional[str]) -> Optional[User]:
        user_id = read_session_token(token, self.settings)
        if user_id is None:
            return None
        return self.users.find_by_id(user_id)

    def get_profile(self, user_id: str) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise UserNotFound("User not found")
        return user

    def update_profile(self, user_id: str, data: ProfileUpdateIn) -> User:
        existing = self.get_profile(user_id)
        if data.email is not None and data.email != existing.email:
            owner = self.users.find_by_email(data.email)
            if owner is not None and owner.id != user_id:
                raise EmailInUse("Email already in use")

        fields: dict[str, object] = {
            "name": data.name,
            "email": data.email,
            "bio": data.bio,
        }
        if data.password is not None:
            fields["password_hash"] = hash_password(data.password)
        updated = self.users.update(user_id, fields)
        if updated is None:
            raise UserNotFound("User not found")
        logger.info(f"profile_updated: user_id={user_id}")
        return updated
