# src/parley_stage/services/keys.py
"""Issue, recover and rotate per-user chat keypairs."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from parley_stage.core.errors import NotFoundError
from parley_stage.services.chat import ChatService
from parley_stage.services.cipher import KeyPair, MessageCipher

logger = logging.getLogger(__name__)


class KeyManager:
    """Keeps exactly one RSA keypair per user.

    The plaintext private key leaves the server only in the response to the
    call that created or recovered it; only the wrapped form is persisted.
    """

    def __init__(self, store: ChatService, cipher: MessageCipher) -> None:
        self.store = store
        self.cipher = cipher

    def _recover(self, user_id: str, password: str) -> KeyPair | None:
        material = self.store.get_key_material(user_id)
        if material is None:
            return None
        # Raises InvalidCredentialError on a wrong password.
        private_key = self.cipher.unwrap_private_key(material.encrypted_private_key, password)
        return KeyPair(public_key=material.public_key, private_key=private_key)

    def generate_keys(self, user_id: str, password: str) -> KeyPair:
        """Return the user's keypair, creating it on first use.

        Args:
            user_id: Owner of the keypair
            password: Password wrapping the private key

        Returns:
            The stored public key with the recovered private key, or a freshly generated pair

        Raises:
            InvalidCredentialError: If key material exists and ``password`` does not unwrap it
        """
        existing = self._recover(user_id, password)
        if existing is not None:
            return existing

        pair = self.cipher.generate_key_pair()
        wrapped = self.cipher.wrap_private_key(pair.private_key, password)
        try:
            self.store.store_user_keys(user_id, pair.public_key, wrapped)
        except IntegrityError:
            # Another request issued keys first; answer from its material.
            logger.info("Concurrent key generation for user %s, using stored keys", user_id)
            existing = self._recover(user_id, password)
            if existing is None:
                raise
            return existing

        logger.info("Issued chat keypair for user %s", user_id)
        return pair

    def rotate_keys(self, user_id: str, password: str) -> KeyPair:
        """Replace the user's keypair after proving knowledge of the current password.

        Messages encrypted under the previous public key become unreadable.

        Raises:
            NotFoundError: If the user has no key material yet
            InvalidCredentialError: If ``password`` does not unwrap the current key
        """
        if self._recover(user_id, password) is None:
            raise NotFoundError("No key material for this user")

        pair = self.cipher.generate_key_pair()
        wrapped = self.cipher.wrap_private_key(pair.private_key, password)
        self.store.store_user_keys(user_id, pair.public_key, wrapped, replace=True)
        logger.info("Rotated chat keypair for user %s", user_id)
        return pair

    def get_public_key(self, user_id: str) -> str:
        public_key = self.store.get_user_public_key(user_id)
        if public_key is None:
            raise NotFoundError("User has no public key")
        return public_key

    def unwrap_private_key(self, user_id: str, password: str) -> str:
        """Recover the plaintext private key of ``user_id`` for server-side decryption."""
        pair = self._recover(user_id, password)
        if pair is None:
            raise NotFoundError("No key material for this user")
        return pair.private_key
