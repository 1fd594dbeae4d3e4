from __future__ import annotations
import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from .errors import ExternalServiceError, MissingApiKeyError, NotFound
from .models import AuthUser
from .settings import settings

logger = logging.getLogger(__name__)


def _fernet(secret: Optional[str] = None) -> Fernet:
	digest = hashlib.sha256((secret or settings.api_key_encryption_secret).encode("utf-8")).digest()
	return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_api_key(api_key: str, secret: Optional[str] = None) -> str:
	return _fernet(secret).encrypt(api_key.encode("utf-8")).decode("ascii")


def decrypt_api_key(ciphertext: str, secret: Optional[str] = None) -> str:
	return _fernet(secret).decrypt(ciphertext.encode("ascii")).decode("utf-8")


def store_api_key(db: Session, username: str, api_key: str) -> None:
	row = db.get(AuthUser, username)
	if row is None:
		raise NotFound("User not found")
	api_key = (api_key or "").strip()
	row.api_key_ciphertext = encrypt_api_key(api_key) if api_key else None
	db.add(row)
	db.commit()
	logger.info("Stored API key for user %s", username)


def get_api_key(db: Session, username: str) -> Optional[str]:
	row = db.get(AuthUser, username)
	if row is None or not row.api_key_ciphertext:
		return None
	try:
		return decrypt_api_key(row.api_key_ciphertext)
	except InvalidToken:
		# Encryption secret was rotated; the stored key is unreadable
		logger.error("Stored API key for user %s could not be decrypted", username)
		raise ExternalServiceError("Your stored API key could not be read. Please save it again.")


def resolve_api_key(db: Session, username: str) -> str:
	"""The user's own key, else the server-wide key, else MissingApiKeyError."""
	api_key = get_api_key(db, username) or settings.gemini_api_key
	if not api_key:
		raise MissingApiKeyError()
	return api_key
