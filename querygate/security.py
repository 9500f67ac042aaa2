"""Credential encryption and security event auditing."""

import base64
import json
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from dotenv import load_dotenv

from .utils import sanitize_for_logging

logger = logging.getLogger(__name__)

MASTER_PASSWORD_ENV = "QUERYGATE_MASTER_PASSWORD"
SALT_FILE_ENV = "QUERYGATE_SALT_FILE"
DEFAULT_SALT_FILE = Path.home() / ".querygate_credential_salt"

SALT_LENGTH = 16
KDF_ITERATIONS = 100000
MAX_IDENTIFIER_LENGTH = 128

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_$]*$')


class SecurityLevel(Enum):
    """Risk levels attached to security audit events."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def derive_fernet_key(master_password: str, salt: bytes) -> bytes:
    """Stretch a master password into a urlsafe Fernet key."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(master_password.encode()))


class SecureCredentialManager:
    """Encrypts and decrypts data source connection configs with a master password.

    The master password comes from the constructor or ``QUERYGATE_MASTER_PASSWORD``.
    Without one the manager is disabled and both directions raise ``ValueError``.
    The key derivation salt lives in a file so tokens survive restarts.
    """

    def __init__(self, master_password: Optional[str] = None, salt_file: Optional[Union[str, Path]] = None):
        self._salt_file = Path(salt_file or os.getenv(SALT_FILE_ENV) or DEFAULT_SALT_FILE)
        if not master_password:
            load_dotenv()
            master_password = os.getenv(MASTER_PASSWORD_ENV)

        self._cipher: Optional[Fernet] = None
        if master_password:
            self._cipher = Fernet(derive_fernet_key(master_password, self._load_salt()))

    @property
    def is_enabled(self) -> bool:
        return self._cipher is not None

    def _load_salt(self) -> bytes:
        try:
            if self._salt_file.is_file():
                salt = self._salt_file.read_bytes()
                if len(salt) == SALT_LENGTH:
                    return salt
                logger.warning(f"Salt file {self._salt_file} is malformed, replacing it")
            salt = os.urandom(SALT_LENGTH)
            self._salt_file.write_bytes(salt)
            self._salt_file.chmod(0o600)
            logger.info(f"Created credential salt file {self._salt_file}")
            return salt
        except OSError as e:
            logger.error(f"Cannot read or write salt file {self._salt_file}: {e}")
            logger.warning("Falling back to a per-process salt; encrypted configs will not decrypt after restart")
            return os.urandom(SALT_LENGTH)

    def _require_cipher(self) -> Fernet:
        if self._cipher is None:
            raise ValueError(f"Credential encryption is disabled; set {MASTER_PASSWORD_ENV}")
        return self._cipher

    def encrypt_config(self, config: Dict[str, Any]) -> str:
        """Encrypt a connection config into a Fernet token."""
        cipher = self._require_cipher()
        logger.debug(f"Encrypting connection config with keys {sorted(config)}")
        return cipher.encrypt(json.dumps(config).encode()).decode()

    def decrypt_config(self, token: str) -> Dict[str, Any]:
        """Decrypt a Fernet token back into a connection config."""
        cipher = self._require_cipher()
        try:
            config = json.loads(cipher.decrypt(token.encode()).decode())
        except (InvalidToken, ValueError) as e:
            logger.error(f"Failed to decrypt connection config: {type(e).__name__}")
            raise ValueError("Invalid or corrupted credential data") from e
        if not isinstance(config, dict):
            raise ValueError("Encrypted credential data is not a connection config")
        return config


def is_valid_identifier(identifier: str) -> bool:
    """Whether a single schema or database name is a plain, unquoted identifier."""
    return (
        bool(identifier)
        and len(identifier) <= MAX_IDENTIFIER_LENGTH
        and _IDENTIFIER.match(identifier) is not None
    )


def is_valid_schema_name(name: str) -> bool:
    """Whether a configured schema is ``schema`` or ``database.schema``."""
    parts = name.split('.') if name else []
    return 0 < len(parts) <= 2 and all(is_valid_identifier(part) for part in parts)


def audit_log_security_event(
    event_type: str,
    details: Dict[str, Any],
    risk_level: SecurityLevel = SecurityLevel.MEDIUM
) -> None:
    """Log security-related events for auditing."""
    logger.warning(
        f"SECURITY_AUDIT: {event_type} | Risk: {risk_level.value} | Details: {sanitize_for_logging(details)}"
    )
