import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "enc:"
IV_SIZE = 12
TAG_SIZE = 16


def derive_key(secret: str, salt: str) -> bytes:
    """Dérive une clé AES-256 à partir du secret opérateur (scrypt)"""
    kdf = Scrypt(salt=salt.encode("utf-8"), length=32, n=2 ** 14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


class SecretCodec:
    """
    Chiffrement des blobs de variables d'environnement au repos.

    Format de l'enveloppe : ``enc:<iv hex>.<tag hex>.<ciphertext hex>``.
    La clé est dérivée une seule fois à la construction et n'est jamais persistée.
    """

    def __init__(self, secret: str, salt: str = "appdeck-salt", key: Optional[bytes] = None):
        self._aesgcm = AESGCM(key if key is not None else derive_key(secret, salt))

    @staticmethod
    def is_sealed(value: Optional[str]) -> bool:
        return isinstance(value, str) and value.startswith(ENVELOPE_PREFIX)

    def seal(self, plaintext: str) -> str:
        iv = os.urandom(IV_SIZE)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{ENVELOPE_PREFIX}{iv.hex()}.{tag.hex()}.{ciphertext.hex()}"

    def open(self, envelope: Optional[str]) -> Optional[str]:
        """Déchiffre une enveloppe; retourne la valeur d'origine si elle n'est pas déchiffrable"""
        if not self.is_sealed(envelope):
            return envelope

        try:
            iv_hex, tag_hex, cipher_hex = envelope[len(ENVELOPE_PREFIX):].split(".")
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(cipher_hex)
            if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
                raise ValueError("malformed envelope")
            return self._aesgcm.decrypt(iv, ciphertext + tag, None).decode("utf-8")
        except (InvalidTag, ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Intégrité : déchiffrement impossible, valeur d'origine retournée ({type(e).__name__})")
            return envelope
