"""
Instance credential lookup and decryption.

Stored passwords are Fernet tokens encrypted with CREDENTIALS_ENCRYPTION_KEY.
"""

from __future__ import annotations

import logging
import uuid

from cryptography.fernet import Fernet, InvalidToken

from app.config import get_credential_settings
from app.domain.remote import RemoteHandle
from app.errors import NotFoundError
from app.repositories.dictionary_store import DictionaryStore

logger = logging.getLogger(__name__)


class CredentialService:
    """
    Resolves an instance id into an authenticated ``RemoteHandle``.
    """

    def __init__(self, *, store: DictionaryStore, encryption_key: str | None = None) -> None:
        self._store = store
        key = encryption_key if encryption_key is not None else get_credential_settings().encryption_key
        self._fernet = Fernet(key.encode("utf-8")) if key else None

    def encrypt_password(self, password: str) -> str:
        return self._require_fernet().encrypt(password.encode("utf-8")).decode("ascii")

    def decrypt_password(self, token: str) -> str:
        try:
            return self._require_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            logger.error("Stored instance password could not be decrypted")
            raise NotFoundError("Instance credentials unavailable.") from exc

    def resolve_handle(self, instance_id: uuid.UUID) -> RemoteHandle:
        """
        Raises
        ------
        NotFoundError
            If the instance is unknown or its credentials cannot be decrypted.
        """

        instance = self._store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance not found: {instance_id}")
        return RemoteHandle.from_basic_auth(
            base_url=instance.base_url,
            username=instance.username,
            password=self.decrypt_password(instance.password_encrypted),
            instance_id=str(instance.id),
            instance_name=instance.name,
        )

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise RuntimeError("CREDENTIALS_ENCRYPTION_KEY is not configured.")
        return self._fernet
