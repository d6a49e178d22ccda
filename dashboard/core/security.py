import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from dashboard.core.config import settings

logger = logging.getLogger("uvicorn.error")

# Claim the tenancy middleware trusts once the signature checks out
ORGANIZATION_CLAIM = "organization_id"

# 1. Credential encryption at rest
fernet = Fernet(settings.ENCRYPTION_KEY.encode() if isinstance(settings.ENCRYPTION_KEY, str) else settings.ENCRYPTION_KEY)

def encrypt_token(token: Optional[str]) -> Optional[str]:
    """Stored WhatsApp access tokens are always Fernet ciphertext."""
    if not token:
        return None
    return fernet.encrypt(token.encode()).decode()

def decrypt_token(encrypted_token: Optional[str]) -> Optional[str]:
    """
    Reverses encrypt_token for an outgoing Graph API call.
    Ciphertext written under a rotated ENCRYPTION_KEY reads as "no token", which
    callers already report as unconfigured credentials.
    """
    if not encrypted_token:
        return None
    try:
        return fernet.decrypt(encrypted_token.encode()).decode()
    except InvalidToken:
        logger.error("Stored access token could not be decrypted")
        return None

def mask_token(token: Optional[str]) -> Optional[str]:
    """Keeps the last four characters so users can tell tokens apart."""
    if not token:
        return None
    if len(token) <= 4:
        return "*" * len(token)
    return "*" * (len(token) - 4) + token[-4:]

# 2. Organization-scoped bearer tokens
def issue_organization_token(organization_id: uuid.UUID, subject: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    claims = {ORGANIZATION_CLAIM: str(organization_id)}
    if subject:
        claims["sub"] = subject
    claims["exp"] = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def read_organization_claim(token: str) -> Optional[str]:
    """
    The organization a bearer token speaks for, or None when the token is
    expired, tampered with, signed with another key, or carries no claim.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Ignoring unverifiable bearer token: {e}")
        return None
    claim = payload.get(ORGANIZATION_CLAIM)
    return str(claim) if claim else None
