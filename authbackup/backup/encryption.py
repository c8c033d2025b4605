"""Artifact encryption."""

import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from authbackup.utils.errors import EncryptionError, create_error_suggestions

KEY_SIZES = {
    "aes-256-gcm": 32,
    "aes-256-cbc": 32,
    "aes-192-gcm": 24,
}

GCM_NONCE_SIZE = 12
CBC_IV_SIZE = 16


def generate_key_file(key_path: str, algorithm: str = "aes-256-gcm", overwrite: bool = False) -> str:
    """
    Write a new random key, hex encoded, readable by the owner only.

    Args:
        key_path: Destination file
        algorithm: Algorithm the key is for (decides its length)
        overwrite: Replace an existing key file

    Returns:
        str: Path to the key file
    """
    if algorithm not in KEY_SIZES:
        raise EncryptionError(f"Unsupported encryption algorithm: {algorithm}")
    if os.path.exists(key_path) and not overwrite:
        raise EncryptionError(
            f"Encryption key already exists: {key_path}",
            suggestions=["Existing backups need the old key; keep a copy before replacing it"],
        )

    directory = os.path.dirname(key_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(key_path, "w", encoding="utf-8") as f:
        f.write(os.urandom(KEY_SIZES[algorithm]).hex())
    os.chmod(key_path, 0o600)

    return key_path


class ArtifactCipher:
    """Encrypts and decrypts whole artifacts with a key file."""

    def __init__(self, algorithm: str, key_path: str):
        if algorithm not in KEY_SIZES:
            raise EncryptionError(f"Unsupported encryption algorithm: {algorithm}")
        self.algorithm = algorithm
        self.key_path = key_path
        self._key: Optional[bytes] = None

    @property
    def key(self) -> bytes:
        """Key bytes, loaded on first use."""
        if self._key is None:
            self._key = self._load_key()
        return self._key

    def encrypt(self, data: bytes) -> bytes:
        if self.algorithm.endswith("-gcm"):
            nonce = os.urandom(GCM_NONCE_SIZE)
            return nonce + AESGCM(self.key).encrypt(nonce, data, None)

        iv = os.urandom(CBC_IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(data) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).encryptor()
        return iv + encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, data: bytes) -> bytes:
        try:
            if self.algorithm.endswith("-gcm"):
                nonce, ciphertext = data[:GCM_NONCE_SIZE], data[GCM_NONCE_SIZE:]
                return AESGCM(self.key).decrypt(nonce, ciphertext, None)

            iv, ciphertext = data[:CBC_IV_SIZE], data[CBC_IV_SIZE:]
            decryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except (InvalidTag, ValueError) as e:
            raise EncryptionError(
                "Failed to decrypt artifact",
                details=f"{type(e).__name__}: {e} (wrong key or corrupted file)",
            )

    def _load_key(self) -> bytes:
        try:
            with open(self.key_path, "r", encoding="utf-8") as f:
                key = bytes.fromhex(f.read().strip())
        except FileNotFoundError:
            raise EncryptionError(
                f"Encryption key file not found: {self.key_path}",
                suggestions=create_error_suggestions("encryption_key_missing"),
            )
        except ValueError:
            raise EncryptionError(f"Encryption key file is not valid hex: {self.key_path}")

        expected = KEY_SIZES[self.algorithm]
        if len(key) != expected:
            raise EncryptionError(
                f"Encryption key has {len(key)} bytes, {self.algorithm} needs {expected}",
            )
        return key
