"""
Credential encryption for the desk configuration file.

Storage keys are encrypted with a Fernet key derived from machine-specific
data, so a copied config file is useless on another machine.
"""

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import base64
import binascii
import getpass
import logging
import platform
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MACHINE_ID_PATH = Path('/etc/machine-id')
KEY_SALT = b'homedesk-salt-v1'


class CredentialManager:
    """Manager for encrypting/decrypting stored credentials."""

    @staticmethod
    def generate_key_from_password(password: str, salt: bytes) -> bytes:
        """
        Derive encryption key from password using PBKDF2.

        Args:
            password: Secret material
            salt: Salt bytes for key derivation

        Returns:
            Urlsafe base64 Fernet key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    @staticmethod
    def machine_secret() -> str:
        try:
            machine_id = MACHINE_ID_PATH.read_text().strip()
        except OSError:
            machine_id = platform.node() or 'default-machine'

        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = 'default-user'

        return f"{machine_id}-{username}"

    @staticmethod
    def generate_machine_key() -> bytes:
        """Machine-specific key, stable across runs for the same user."""
        return CredentialManager.generate_key_from_password(
            CredentialManager.machine_secret(), KEY_SALT
        )

    @staticmethod
    def encrypt(data: str, key: Optional[bytes] = None) -> str:
        """
        Encrypt string data.

        Args:
            data: String to encrypt
            key: Encryption key (generates machine key if None)

        Returns:
            Base64-encoded encrypted string
        """
        if key is None:
            key = CredentialManager.generate_machine_key()

        token = Fernet(key).encrypt(data.encode())
        return base64.urlsafe_b64encode(token).decode()

    @staticmethod
    def decrypt(encrypted_data: str, key: Optional[bytes] = None) -> Optional[str]:
        """
        Decrypt encrypted string data.

        Returns:
            Decrypted string, or None if the data was encrypted elsewhere
            or is corrupt
        """
        if key is None:
            key = CredentialManager.generate_machine_key()

        try:
            token = base64.urlsafe_b64decode(encrypted_data.encode())
            return Fernet(key).decrypt(token).decode()
        except (InvalidToken, binascii.Error, ValueError) as e:
            logger.warning(f"Credential decryption failed: {e}")
            return None
