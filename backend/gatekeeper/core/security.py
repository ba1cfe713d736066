"""Security helpers for password hashing, signed tokens, and secret encryption."""
from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Protocol

import jwt
from cryptography.fernet import Fernet, InvalidToken as InvalidFernetToken
from itsdangerous import BadData, URLSafeTimedSerializer
from passlib.context import CryptContext

from .config import AUTOMATION_ROLE_ID, Settings, get_settings
from .exceptions import ExpiredToken, InvalidOrExpiredToken, InvalidToken

SESSION_TOKEN_ALGORITHM = "HS256"

UPPERCASE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ"  # no I, O
LOWERCASE_CHARS = "abcdefghijkmnpqrstuvwxyz"  # no l, o
DIGIT_CHARS = "23456789"  # no 0, 1
SPECIAL_CHARS = "@#$%&*!?"
PASSWORD_CHAR_CLASSES = (UPPERCASE_CHARS, LOWERCASE_CHARS, DIGIT_CHARS, SPECIAL_CHARS)


@lru_cache
def _password_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


class PasswordHasher:
    """Hash and verify user passwords using bcrypt."""

    @staticmethod
    def hash(password: str) -> str:
        return _password_context(get_settings().password_hash_rounds).hash(password)

    @staticmethod
    def verify(password: str, hashed: str) -> bool:
        try:
            return _password_context(get_settings().password_hash_rounds).verify(password, hashed)
        except ValueError:
            # Unrecognised or corrupt hash
            return False


def generate_random_password(length: int = 10) -> str:
    """Return a random password with at least one character of every class.

    Visually ambiguous characters are excluded so the password can be read
    back from an email without confusion.
    """
    if length < len(PASSWORD_CHAR_CLASSES):
        raise ValueError(f"Password length must be at least {len(PASSWORD_CHAR_CLASSES)}")

    alphabet = "".join(PASSWORD_CHAR_CLASSES)
    chars = [secrets.choice(char_class) for char_class in PASSWORD_CHAR_CLASSES]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


@dataclass(frozen=True, slots=True)
class Finite:
    """Session tokens expire ``lifetime`` after issuance."""

    lifetime: timedelta


@dataclass(frozen=True, slots=True)
class Never:
    """Session tokens carry no expiry claim."""


NEVER = Never()
SessionExpiry = Finite | Never


def expiry_for_role(role_id: int | None, settings: Settings | None = None) -> SessionExpiry:
    settings = settings or get_settings()
    if role_id == AUTOMATION_ROLE_ID:
        return NEVER
    return Finite(timedelta(minutes=settings.session_token_lifetime_minutes))


class TokenSubject(Protocol):
    id: int
    email: str
    role_id: int | None


@dataclass(frozen=True, slots=True)
class SessionClaims:
    user_id: int
    email: str
    role_id: int | None
    issued_at: datetime
    expires_at: datetime | None


class SessionTokenService:
    """Issue and verify signed session tokens (JWT, HS256)."""

    def __init__(self, secret: str | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._secret = secret or self._settings.secret_key

    def issue(
        self,
        user: TokenSubject,
        expiry: SessionExpiry | None = None,
        now: datetime | None = None,
    ) -> str:
        if expiry is None:
            expiry = expiry_for_role(user.role_id, self._settings)
        issued_at = now or datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "user_id": str(user.id),
            "email": user.email,
            "role_id": str(user.role_id) if user.role_id is not None else None,
            "iat": int(issued_at.timestamp()),
        }
        if isinstance(expiry, Finite):
            payload["exp"] = int((issued_at + expiry.lifetime).timestamp())
        return jwt.encode(payload, self._secret, algorithm=SESSION_TOKEN_ALGORITHM)

    def verify(self, token: str, ignore_expiry: bool = False) -> SessionClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_TOKEN_ALGORITHM],
                options={"verify_exp": not ignore_expiry, "require": ["iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except jwt.PyJWTError as exc:
            raise InvalidToken() from exc

        try:
            user_id = int(payload["user_id"])
            role_id = int(payload["role_id"]) if payload.get("role_id") is not None else None
            email = str(payload["email"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc

        exp = payload.get("exp")
        return SessionClaims(
            user_id=user_id,
            email=email,
            role_id=role_id,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None,
        )


class RecoveryTokenService:
    """Sign and verify single-use password recovery tokens."""

    def __init__(self, secret: str | None = None, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._serializer = URLSafeTimedSerializer(
            secret or settings.effective_recovery_secret, salt="gatekeeper-recovery"
        )
        self._max_age = settings.recovery_token_lifetime_minutes * 60

    def issue(self, email: str) -> str:
        # The nonce keeps two tokens issued within the same second distinct.
        return self._serializer.dumps({"email": email, "nonce": secrets.token_urlsafe(8)})

    def verify(self, token: str) -> str:
        try:
            payload = self._serializer.loads(token, max_age=self._max_age)
        except BadData as exc:
            raise InvalidOrExpiredToken() from exc
        email = payload.get("email") if isinstance(payload, dict) else None
        if not isinstance(email, str) or not email:
            raise InvalidOrExpiredToken()
        return email


class OAuthStateSigner:
    """Sign the ``state`` parameter round-tripped through the identity provider.

    The state carries a nonce that is also stored in a browser cookie; a
    callback is accepted only when both agree, which ties it to the browser
    that started the sign-in.
    """

    def __init__(self, secret: str | None = None, settings: Settings | None = None, max_age: int = 600) -> None:
        settings = settings or get_settings()
        self._serializer = URLSafeTimedSerializer(secret or settings.secret_key, salt="gatekeeper-oauth-state")
        self.max_age = max_age

    @staticmethod
    def new_nonce() -> str:
        return secrets.token_urlsafe(16)

    def dumps(self, nonce: str) -> str:
        return self._serializer.dumps({"nonce": nonce})

    def verify(self, state: str, nonce: str | None) -> bool:
        if not nonce:
            return False
        try:
            payload = self._serializer.loads(state, max_age=self.max_age)
        except BadData:
            return False
        signed_nonce = payload.get("nonce") if isinstance(payload, dict) else None
        return isinstance(signed_nonce, str) and secrets.compare_digest(signed_nonce, nonce)


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class SecretManager:
    """Encrypt and decrypt provider tokens with Fernet."""

    def __init__(self, key: str | None = None, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        raw_key = key or settings.encryption_key or settings.secret_key
        self._fernet = Fernet(_derive_fernet_key(raw_key))

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidFernetToken as exc:
            raise ValueError("Invalid encryption token") from exc
