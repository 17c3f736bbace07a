"""
Settlement Key Storage

Loads the backend wallet keypair that signs settlement transactions, either
from a base58 secret in the environment or from an encrypted key file.
"""

import base64
from pathlib import Path
from typing import Optional
import base58
import structlog

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from solders.keypair import Keypair

from ..core.errors import ConfigurationError

logger = structlog.get_logger()

KEY_FILE_NAME = "settlement_key.enc"


class SettlementKeyStore:
    """
    Backend keypair source.

    BACKEND_WALLET_PRIVATE_KEY (base58) wins when set. Otherwise the keypair
    is read from `<storage_path>/settlement_key.enc`, encrypted with a Fernet
    key derived from the master secret.
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        storage_path: str = ".keys",
        master_secret: Optional[str] = None,
    ):
        self._private_key = private_key
        self.storage_path = Path(storage_path)
        self._fernet = Fernet(self._derive_key(master_secret.encode())) if master_secret else None
        self._keypair: Optional[Keypair] = None

    def _derive_key(self, secret: bytes) -> bytes:
        """Derive encryption key from master secret."""
        salt = b"burn-rail-settlement-v1"  # Static salt, secret provides entropy
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(secret))

    @property
    def key_file(self) -> Path:
        return self.storage_path / KEY_FILE_NAME

    def load_keypair(self) -> Keypair:
        """Return the settlement keypair, or raise ConfigurationError."""
        if self._keypair is not None:
            return self._keypair

        if self._private_key:
            keypair = self._decode_private_key(self._private_key)
            source = "env"
        else:
            keypair = self._load_from_file()
            source = "file"

        self._keypair = keypair
        logger.info("settlement_key_loaded", source=source, pubkey=str(keypair.pubkey()))
        return keypair

    def _decode_private_key(self, encoded: str) -> Keypair:
        try:
            raw = base58.b58decode(encoded.strip())
        except ValueError as e:
            raise ConfigurationError("Invalid BACKEND_WALLET_PRIVATE_KEY", {"error": str(e)})
        if len(raw) != 64:
            raise ConfigurationError(
                "Invalid BACKEND_WALLET_PRIVATE_KEY",
                {"error": f"expected 64 bytes, got {len(raw)}"},
            )
        try:
            return Keypair.from_bytes(raw)
        except ValueError as e:
            raise ConfigurationError("Invalid BACKEND_WALLET_PRIVATE_KEY", {"error": str(e)})

    def _load_from_file(self) -> Keypair:
        if self._fernet is None or not self.key_file.exists():
            raise ConfigurationError(
                "No settlement key configured",
                {"hint": "set BACKEND_WALLET_PRIVATE_KEY or KEY_MASTER_SECRET with a stored key"},
            )
        try:
            raw = self._fernet.decrypt(self.key_file.read_bytes())
        except InvalidToken:
            raise ConfigurationError("Settlement key file cannot be decrypted with KEY_MASTER_SECRET")
        if len(raw) != 64:
            raise ConfigurationError(
                "Settlement key file does not hold a valid keypair",
                {"error": f"expected 64 bytes, got {len(raw)}"},
            )
        try:
            return Keypair.from_bytes(raw)
        except ValueError as e:
            raise ConfigurationError("Settlement key file does not hold a valid keypair", {"error": str(e)})

    def store_keypair(self, keypair: Keypair) -> Path:
        """Encrypt and write the keypair to the key file."""
        if self._fernet is None:
            raise ConfigurationError("KEY_MASTER_SECRET is required to store a settlement key")

        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.key_file.write_bytes(self._fernet.encrypt(bytes(keypair)))
        self._keypair = keypair
        logger.info("settlement_key_stored", pubkey=str(keypair.pubkey()), path=str(self.key_file))
        return self.key_file

    def has_key(self) -> bool:
        return bool(self._private_key) or (self._fernet is not None and self.key_file.exists())
