import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from clinic.core import config
from clinic.core.errors import InvalidToken
from clinic.models.user import Role

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
PASSWORD_RESET_TOKEN_TYPE = "password_reset"


@dataclass(frozen=True)
class TokenSettings:
    secret_key: str
    algorithm: str = "HS256"
    expires_minutes: int = 24 * 60
    password_reset_expires_minutes: int = 60

    @classmethod
    def from_config(cls) -> "TokenSettings":
        return cls(
            secret_key=config.JWT_SECRET_KEY,
            algorithm=config.JWT_ALGORITHM,
            expires_minutes=config.JWT_EXPIRES_MINUTES,
            password_reset_expires_minutes=config.PASSWORD_RESET_EXPIRES_MINUTES,
        )


@dataclass(frozen=True)
class TokenClaims:
    email: str
    role: Role
    user_id: int
    issued_at: datetime
    expires_at: datetime


class TokenAuthority:
    """Issues and verifies signed session and password reset tokens.

    Tokens are self-contained, so nothing is stored server side. Every
    ``validate``-style check fails closed and returns ``False`` instead of
    raising.
    """

    def __init__(self, settings: TokenSettings):
        self.settings = settings

    def issue(self, email: str, role: Role | str, user_id: int, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(minutes=self.settings.expires_minutes)
        payload = {
            "sub": email,
            "role": Role(role).value,
            "userId": user_id,
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": expires_at,
        }
        return self._encode(payload)

    def decode(self, token: str) -> TokenClaims:
        payload = self._decode_payload(token)
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidToken("Token is not a session token.")
        try:
            return TokenClaims(
                email=payload["sub"],
                role=Role(payload["role"]),
                user_id=int(payload["userId"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken("Token claims are malformed.") from exc

    def validate(self, token: str) -> bool:
        try:
            self.decode(token)
        except InvalidToken:
            return False
        return True

    def is_expired(self, token: str, now: datetime | None = None) -> bool:
        try:
            claims = self.decode(token)
        except InvalidToken:
            return True
        return claims.expires_at <= (now or datetime.now(timezone.utc))

    def has_role(self, token: str, role: Role | str) -> bool:
        try:
            return self.decode(token).role == Role(role)
        except (InvalidToken, ValueError):
            return False

    def refresh(self, token: str) -> str | None:
        try:
            claims = self.decode(token)
        except InvalidToken:
            return None
        return self.issue(claims.email, claims.role, claims.user_id)

    def remaining_seconds(self, token: str) -> int:
        try:
            claims = self.decode(token)
        except InvalidToken:
            return 0
        remaining = claims.expires_at - datetime.now(timezone.utc)
        return max(0, int(remaining.total_seconds()))

    def issue_password_reset(self, email: str, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": email,
            "type": PASSWORD_RESET_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=self.settings.password_reset_expires_minutes),
        }
        return self._encode(payload)

    def validate_password_reset(self, token: str) -> bool:
        try:
            payload = self._decode_payload(token)
        except InvalidToken:
            return False
        return payload.get("type") == PASSWORD_RESET_TOKEN_TYPE

    def password_reset_email(self, token: str) -> str:
        payload = self._decode_payload(token)
        if payload.get("type") != PASSWORD_RESET_TOKEN_TYPE:
            raise InvalidToken("Token is not a password reset token.")
        return payload["sub"]

    def _encode(self, payload: dict) -> str:
        return jwt.encode(payload, self.settings.secret_key, algorithm=self.settings.algorithm)

    def _decode_payload(self, token: str) -> dict:
        if not token or not isinstance(token, (str, bytes)):
            raise InvalidToken("Token is missing.")
        try:
            return jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[self.settings.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.debug("Rejected expired token")
            raise InvalidToken("Token has expired.") from exc
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected token: %s", exc.__class__.__name__)
            raise InvalidToken() from exc
