# src/parley_stage/services/cipher.py
"""Cryptographic primitives for end-to-end encrypted chat.

Messages are encrypted with RSA-OAEP (SHA-256) under the receiver's public
key. Private keys are persisted only in wrapped form: scrypt stretches the
owner's password with a per-record salt, and AES-256-GCM seals the PEM under
that key with a random nonce. Salt, nonce and cost parameters are stored
inside the wrapped value.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from parley_stage.core.errors import (
    DecryptionFailedError,
    InvalidCredentialError,
    PayloadTooLargeError,
)
from parley_stage.core.settings import settings

MIN_RSA_KEY_SIZE: Final[int] = 2048
RSA_PUBLIC_EXPONENT: Final[int] = 65537
OAEP_HASH_BYTES: Final[int] = 32

WRAP_SCHEME: Final[str] = "scrypt-aesgcm"
WRAP_SALT_BYTES: Final[int] = 16
WRAP_NONCE_BYTES: Final[int] = 12
WRAP_KEY_BYTES: Final[int] = 32
WRAP_AAD: Final[bytes] = b"parley-private-key"


@dataclass(frozen=True)
class KeyPair:
    """PEM-encoded RSA keypair."""

    public_key: str
    private_key: str


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _unb64(data: str) -> bytes:
    padding_chars = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding_chars)


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


class MessageCipher:
    """Stateless message and key-wrapping cipher.

    Configuration is fixed at construction; instances hold no mutable state
    and are safe to share between handlers.
    """

    def __init__(
        self,
        *,
        key_size: int | None = None,
        scrypt_n: int | None = None,
        scrypt_r: int | None = None,
        scrypt_p: int | None = None,
    ) -> None:
        self.key_size = key_size if key_size is not None else settings.rsa_key_size
        if self.key_size < MIN_RSA_KEY_SIZE:
            raise ValueError(f"RSA key size must be at least {MIN_RSA_KEY_SIZE} bits")
        self.scrypt_n = scrypt_n if scrypt_n is not None else settings.kdf_scrypt_n
        self.scrypt_r = scrypt_r if scrypt_r is not None else settings.kdf_scrypt_r
        self.scrypt_p = scrypt_p if scrypt_p is not None else settings.kdf_scrypt_p

    # --- Asymmetric keys ------------------------------------------------------------
    def generate_key_pair(self) -> KeyPair:
        """Generate a new RSA keypair.

        Returns:
            KeyPair with a SubjectPublicKeyInfo public PEM and an unencrypted PKCS8 private PEM
        """
        private_key = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=self.key_size,
        )
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        return KeyPair(public_key=public_pem, private_key=private_pem)

    @staticmethod
    def max_plaintext_bytes(public_key: rsa.RSAPublicKey) -> int:
        """Return the largest plaintext one OAEP/SHA-256 block can carry for ``public_key``."""
        return (public_key.key_size + 7) // 8 - 2 * OAEP_HASH_BYTES - 2

    # --- Message encryption ---------------------------------------------------------
    def encrypt_message(self, plaintext: str, receiver_public_key: str) -> str:
        """Encrypt ``plaintext`` for the holder of ``receiver_public_key``.

        Args:
            plaintext: Message body
            receiver_public_key: PEM-encoded RSA public key of the receiver

        Returns:
            Base64-encoded ciphertext

        Raises:
            PayloadTooLargeError: If the UTF-8 plaintext exceeds one OAEP block
            ValueError: If the public key cannot be loaded as RSA
        """
        try:
            public_key = serialization.load_pem_public_key(receiver_public_key.encode())
        except (ValueError, TypeError) as err:
            raise ValueError(f"Invalid public key: {err}") from err
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise ValueError("Invalid public key: not an RSA key")

        data = plaintext.encode("utf-8")
        limit = self.max_plaintext_bytes(public_key)
        if len(data) > limit:
            raise PayloadTooLargeError(f"Message too large to encrypt (max {limit} bytes)")

        ciphertext = public_key.encrypt(data, _oaep())
        return base64.b64encode(ciphertext).decode()

    def decrypt_message(self, ciphertext: str, private_key: str) -> str:
        """Decrypt a message produced by :meth:`encrypt_message`.

        Raises:
            DecryptionFailedError: On corrupt ciphertext, a mismatched or unreadable key,
                or a padding check failure
        """
        try:
            key = serialization.load_pem_private_key(private_key.encode(), password=None)
        except (ValueError, TypeError) as err:
            raise DecryptionFailedError("Invalid private key") from err
        if not isinstance(key, rsa.RSAPrivateKey):
            raise DecryptionFailedError("Invalid private key")

        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as err:
            raise DecryptionFailedError("Ciphertext must be valid base64") from err

        try:
            return key.decrypt(raw, _oaep()).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as err:
            raise DecryptionFailedError() from err

    # --- Private key wrapping -------------------------------------------------------
    def _derive_key(self, password: str, salt: bytes, n: int, r: int, p: int) -> bytes:
        kdf = Scrypt(salt=salt, length=WRAP_KEY_BYTES, n=n, r=r, p=p)
        return kdf.derive(password.encode("utf-8"))

    def wrap_private_key(self, private_key: str, password: str) -> str:
        """Seal a PEM private key under a password-derived key.

        Every call draws a fresh salt and nonce, so wrapping the same key twice
        yields different values.
        """
        salt = secrets.token_bytes(WRAP_SALT_BYTES)
        nonce = secrets.token_bytes(WRAP_NONCE_BYTES)
        n, r, p = self.scrypt_n, self.scrypt_r, self.scrypt_p
        key = self._derive_key(password, salt, n, r, p)
        sealed = AESGCM(key).encrypt(nonce, private_key.encode("utf-8"), WRAP_AAD)
        return "$".join(
            (WRAP_SCHEME, str(n), str(r), str(p), _b64(salt), _b64(nonce), _b64(sealed))
        )

    def unwrap_private_key(self, wrapped: str, password: str) -> str:
        """Recover a PEM private key sealed by :meth:`wrap_private_key`.

        Raises:
            InvalidCredentialError: If ``password`` is wrong
            DecryptionFailedError: If ``wrapped`` is not a recognised wrapped key
        """
        try:
            scheme, n, r, p, salt, nonce, sealed = wrapped.split("$")
            if scheme != WRAP_SCHEME:
                raise ValueError(f"Unsupported wrapping scheme {scheme!r}")
            salt_bytes, nonce_bytes, sealed_bytes = _unb64(salt), _unb64(nonce), _unb64(sealed)
            key = self._derive_key(password, salt_bytes, int(n), int(r), int(p))
        except (ValueError, binascii.Error) as err:
            raise DecryptionFailedError("Malformed wrapped private key") from err

        try:
            plaintext = AESGCM(key).decrypt(nonce_bytes, sealed_bytes, WRAP_AAD)
        except InvalidTag as err:
            raise InvalidCredentialError() from err
        except ValueError as err:
            raise DecryptionFailedError("Malformed wrapped private key") from err
        return plaintext.decode("utf-8")


def get_message_cipher() -> MessageCipher:
    """Return a message cipher configured from settings."""
    return MessageCipher()
