"""Credential encryption utilities"""
import base64
import json
from datetime import datetime

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mailpush.domain.entities import ProviderCredential
from mailpush.infrastructure.config.settings import get_settings
from mailpush.shared.utils import ensure_utc


class CredentialEncryptor:
    """Encrypt/decrypt provider credentials using Fernet symmetric encryption"""

    def __init__(self, secret_key: str | None = None, salt: str | None = None):
        if secret_key is None or salt is None:
            settings = get_settings()
            secret_key = secret_key or settings.secret_key
            salt = salt or settings.encryption_salt
        self._fernet = Fernet(self._derive_key(secret_key, salt))

    @staticmethod
    def _derive_key(secret_key: str, salt: str) -> bytes:
        """
        Derive the Fernet key from the app secret using PBKDF2-HMAC-SHA256.

        100,000 iterations over secret_key with a deployment-specific salt,
        base64url-encoded as Fernet requires.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=100_000,
        )
        return base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))

    def encrypt(self, credentials: dict) -> str:
        """Encrypt credentials dictionary to a string safe for database storage"""
        json_str = json.dumps(credentials)
        return self._fernet.encrypt(json_str.encode()).decode()

    def decrypt(self, encrypted_str: str) -> dict:
        """Decrypt credentials string to dictionary"""
        try:
            result = json.loads(self._fernet.decrypt(encrypted_str.encode()).decode())
            if not isinstance(result, dict):
                raise ValueError("Decrypted credentials must be a dictionary")
            return result
        except InvalidToken as e:
            raise ValueError(
                "Failed to decrypt credentials - invalid or corrupted data"
            ) from e
        except json.JSONDecodeError as e:
            raise ValueError("Decrypted credentials are not valid JSON") from e

    def encrypt_credential(self, credential: ProviderCredential) -> str:
        expires_at = credential.access_token_expires_at
        return self.encrypt({
            "refresh_token": credential.refresh_token,
            "access_token": credential.access_token,
            "expires_at": ensure_utc(expires_at).isoformat() if expires_at else None,
        })

    def decrypt_credential(self, encrypted_str: str) -> ProviderCredential:
        data = self.decrypt(encrypted_str)
        expires_at = data.get("expires_at")
        return ProviderCredential(
            refresh_token=data["refresh_token"],
            access_token=data.get("access_token"),
            access_token_expires_at=ensure_utc(datetime.fromisoformat(expires_at)) if expires_at else None,
        )
