"""
Security Module - Webhook API keys & phone identity
"""
from datetime import datetime
from typing import Iterable, List, Optional
import logging
import re
import secrets

from sqlalchemy.orm import Session

from facility_ledger.core.config import settings
from facility_ledger.models import ApiKey, User, UserRole

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"

ACCOUNTANT_ROLES = (UserRole.ACCOUNTANT.value, UserRole.ADMIN.value)


def normalize_phone(value: Optional[str]) -> str:
    """Keep digits and a leading plus sign"""
    if not value:
        return ""
    trimmed = value.strip()
    digits = re.sub(r"\D", "", trimmed)
    if not digits:
        return ""
    return f"+{digits}" if trimmed.startswith("+") else digits


def build_phone_variants(value: Optional[str]) -> List[str]:
    """
    Spellings under which a WhatsApp number may have been stored.
    The raw value comes first, followed by the normalized forms with and
    without the plus sign.
    """
    if not value:
        return []
    variants = [value]
    normalized = normalize_phone(value)
    if normalized:
        digits_only = normalized.lstrip("+")
        for variant in (normalized, digits_only, f"+{digits_only}"):
            if variant not in variants:
                variants.append(variant)
    return variants


class ApiKeyVerifier:
    """Checks the pre-shared key sent by the automation layer"""

    def __init__(self, db: Session):
        self.db = db

    def verify(self, key: Optional[str]) -> Optional[ApiKey]:
        """Return the active key record, or None when the key is missing or unknown"""
        if not key:
            return None

        api_key = self.db.query(ApiKey).filter(ApiKey.key == key).first()
        if api_key is None or not api_key.is_active:
            return None

        # Constant-time compare on the stored value
        if not secrets.compare_digest(api_key.key, key):
            return None

        api_key.last_used_at = datetime.utcnow()
        self.db.flush()
        return api_key

    @staticmethod
    def has_role(api_key: ApiKey, roles: Iterable[str]) -> bool:
        return api_key.role in set(roles)


def resolve_accountant(db: Session, sender_phone: Optional[str]) -> Optional[User]:
    """Find the active accountant (or admin) whose WhatsApp number matches"""
    variants = build_phone_variants(sender_phone)
    if not variants:
        return None

    return db.query(User).filter(
        User.whatsapp_phone.in_(variants),
        User.role.in_(ACCOUNTANT_ROLES),
        User.is_active == True
    ).order_by(User.id).first()


def ensure_bootstrap_api_key(db: Session) -> Optional[ApiKey]:
    """Seed the key configured in BOOTSTRAP_API_KEY if it is not stored yet"""
    if not settings.BOOTSTRAP_API_KEY:
        return None

    existing = db.query(ApiKey).filter(ApiKey.key == settings.BOOTSTRAP_API_KEY).first()
    if existing:
        return existing

    api_key = ApiKey(
        name="bootstrap",
        key=settings.BOOTSTRAP_API_KEY,
        role=settings.BOOTSTRAP_API_KEY_ROLE,
        is_active=True
    )
    db.add(api_key)
    db.commit()
    logger.info(f"Bootstrap API key seeded with role {api_key.role}")
    return api_key
