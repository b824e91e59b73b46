"""
Session token generation and validation.

Session tokens are HS256 JWTs carrying the account id, role and a token
id (jti) that names the server-side session row.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from loguru import logger

from .models import Identity

ALGORITHM = "HS256"
SESSION_TOKEN_EXPIRE_MINUTES = 12 * 60  # 12 hours


@dataclass
class TokenPayload:
    """
    Decoded session token.

    Attributes:
        subject: Account id (sub claim)
        role: Account role value
        jti: Token id
        iat: Issued at timestamp
        exp: Expiration timestamp
    """
    subject: str
    role: str
    jti: str
    iat: datetime
    exp: datetime


@dataclass(frozen=True)
class IssuedToken:
    """A freshly minted token and its claims."""

    token: str
    jti: str
    issued_at: datetime
    expires_at: datetime


class SessionTokenHandler:
    """
    Session token handler.

    Creates and validates signed, expiring session tokens.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = ALGORITHM,
        expire_minutes: int = SESSION_TOKEN_EXPIRE_MINUTES,
    ):
        """
        Initialize handler.

        Args:
            secret_key: Secret key for signing tokens
            algorithm: JWT algorithm (default: HS256)
            expire_minutes: Token lifetime in minutes
        """
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def create_token(self, identity: Identity) -> IssuedToken:
        """
        Create a session token for an identity.

        Each call produces a distinct token, even for the same identity
        within the same second.

        Args:
            identity: Authenticated principal

        Returns:
            IssuedToken with the encoded token and its claims
        """
        now = datetime.now(timezone.utc)
        expire = now + timedelta(minutes=self.expire_minutes)
        jti = secrets.token_urlsafe(16)

        payload = {
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "sub": identity.id,
            "role": identity.role.value,
            "jti": jti,
            "type": "session",
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Session token created for {identity.role.value} {identity.id}")

        return IssuedToken(
            token=token,
            jti=jti,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def verify_token(self, token: str) -> Optional[TokenPayload]:
        """
        Verify and decode a session token.

        Args:
            token: JWT token string

        Returns:
            TokenPayload if valid, None if invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub", "jti"]},
            )

            if payload.get("type") != "session":
                logger.warning("Token is not a session token")
                return None

            return TokenPayload(
                subject=payload["sub"],
                role=payload.get("role", ""),
                jti=payload["jti"],
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )

        except jwt.ExpiredSignatureError:
            logger.warning("Session token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid session token: {e}")
            return None

    def decode_unverified(self, token: str) -> Optional[TokenPayload]:
        """
        Decode a session token without verifying signature or expiry.

        Used on sign-out, where an expired token must still name its
        session row, and when restoring with verification turned off.

        Args:
            token: JWT token string

        Returns:
            TokenPayload, or None if the token is not a well-formed session token
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
            return TokenPayload(
                subject=str(payload["sub"]),
                role=str(payload.get("role", "")),
                jti=str(payload["jti"]),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Failed to decode session token: {e}")
            return None
