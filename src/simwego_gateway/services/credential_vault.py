"""
Credential Vault - encryption of upstream passwords and API key generation
"""
import hashlib
import secrets
import string
import time
from typing import Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..core.errors import DecryptionError, EncryptionError

IV_LENGTH = 16
KEY_LENGTH = 32
KDF_SALT = b"salt"
BASE36_ALPHABET = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def mask(value: Optional[str], visible: int = 2) -> str:
    """Mask a secret-ish value for logs and request context"""
    if not value:
        return ""
    if len(value) <= visible:
        return "***"
    return value[:visible] + "***"


class CredentialVault:
    """
    AES-256-CBC vault keyed from a single master secret.

    Ciphertexts are stored as ``"<hex iv>:<hex ciphertext>"``. The key is
    derived with scrypt (N=16384, r=8, p=1) and a fixed salt, once per vault.
    """

    def __init__(self, master_secret: str, api_key_prefix: str = "swg"):
        if not master_secret:
            raise EncryptionError("Master secret is not configured")
        self._master_secret = master_secret
        self._api_key_prefix = api_key_prefix
        self._key: Optional[bytes] = None

    def derive_key(self) -> bytes:
        if self._key is None:
            kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=2 ** 14, r=8, p=1)
            self._key = kdf.derive(self._master_secret.encode("utf-8"))
        return self._key

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a password

        Args:
            plaintext: Password in clear

        Returns:
            ``iv:ciphertext`` hex string

        Raises:
            EncryptionError: If the password is empty
        """
        if not plaintext:
            raise EncryptionError("Password cannot be empty")

        iv = secrets.token_bytes(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self.derive_key()), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return iv.hex() + ":" + ciphertext.hex()

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a password produced by :meth:`encrypt`

        Raises:
            DecryptionError: If the blob is malformed or cannot be decrypted
                with this vault's key
        """
        if not blob or ":" not in blob:
            raise DecryptionError("Invalid encrypted password format")

        iv_hex, _, ciphertext_hex = blob.partition(":")
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError:
            raise DecryptionError("Invalid encrypted password format") from None

        if len(iv) != IV_LENGTH or not ciphertext or len(ciphertext) % IV_LENGTH:
            raise DecryptionError("Invalid encrypted password format")

        decryptor = Cipher(algorithms.AES(self.derive_key()), modes.CBC(iv)).decryptor()
        try:
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, InvalidKey, UnicodeDecodeError):
            raise DecryptionError("Unable to decrypt password") from None

    def generate_api_key(self, tenant_id: str) -> str:
        """
        Generate an opaque API key for a tenant

        The tenant id only enters through a truncated SHA-256 digest.
        """
        client_hash = hashlib.sha256(tenant_id.encode("utf-8")).hexdigest()[:8]
        timestamp = to_base36(int(time.time() * 1000))
        random_part = secrets.token_hex(16)
        return f"{self._api_key_prefix}_{client_hash}_{timestamp}_{random_part}"
