import asyncio
import hashlib
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt
import structlog

from .config import settings
from .timeutils import utcnow

logger = structlog.get_logger()

TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"

# Hash compared against when no account matches, so unknown emails cost a bcrypt round too
_dummy_hash: Optional[str] = None


class SecurityService:
    """Handles password hashing and token signing"""

    @staticmethod
    async def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
        """Generate a bcrypt hash off the event loop"""
        salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
        hashed = await asyncio.to_thread(bcrypt.hashpw, password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    async def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its bcrypt hash off the event loop"""
        try:
            return await asyncio.to_thread(
                bcrypt.checkpw,
                plain_password.encode("utf-8"),
                hashed_password.encode("utf-8")
            )
        except ValueError as e:
            # malformed stored hash or over-long password
            logger.warning("Password verification failed", error=str(e))
            return False

    @staticmethod
    async def verify_dummy_password(plain_password: str) -> bool:
        """Run a password check against a throwaway hash; always False"""
        global _dummy_hash
        if _dummy_hash is None:
            _dummy_hash = await SecurityService.get_password_hash(secrets.token_urlsafe(16))
        await SecurityService.verify_password(plain_password, _dummy_hash)
        return False

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 digest of a signed token; only the digest is persisted"""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def generate_jti() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def generate_temporary_password(length: Optional[int] = None) -> str:
        """Random password containing upper, lower, digit and symbol characters"""
        length = length or settings.TEMP_PASSWORD_LENGTH
        while True:
            password = "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))
            if (
                any(c.islower() for c in password)
                and any(c.isupper() for c in password)
                and any(c.isdigit() for c in password)
                and any(c in "!@#$%^&*" for c in password)
            ):
                return password

    @staticmethod
    def create_access_token(
        claims: Dict[str, Any],
        expires_delta: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Sign a short-lived access token.

        Args:
            claims: Identity claims (sub, email, role, firstName, lastName, jti)
            expires_delta: Lifetime override
            now: Issue time override

        Returns:
            Encoded JWT
        """
        issued_at = now or utcnow()
        expire = issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode = {**claims, "iat": issued_at, "exp": expire}
        return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def create_refresh_token(
        user_id: str,
        jti: str,
        expires_delta: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> str:
        """Sign a refresh token carrying only {sub, jti}"""
        issued_at = now or utcnow()
        expire = issued_at + (expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))
        to_encode = {"sub": user_id, "jti": jti, "iat": issued_at, "exp": expire}
        return jwt.encode(to_encode, settings.JWT_REFRESH_SECRET, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
        """Decode and verify an access token; None if invalid or expired"""
        try:
            return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except JWTError as e:
            logger.debug("Access token rejected", error=str(e))
            return None

    @staticmethod
    def decode_refresh_token(token: str) -> Optional[Dict[str, Any]]:
        """Decode and verify a refresh token; None if invalid or expired"""
        try:
            return jwt.decode(token, settings.JWT_REFRESH_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except JWTError as e:
            logger.debug("Refresh token rejected", error=str(e))
            return None
