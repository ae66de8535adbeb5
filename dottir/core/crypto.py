"""
Module de cryptographie pour Dottir.

Deux responsabilites:
- SecureRandom: fournisseur unique d'alea cryptographique, injecte dans
  les composants qui generent des secrets (TOTP, codes de secours,
  tokens de session, nonces CSRF, challenges MFA)
- Chiffrement AES-256-GCM des secrets TOTP au repos

Format de sortie du chiffrement: base64(IV + ciphertext + tag)
"""
import base64
import hashlib
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dottir.core.config import get_settings


# Alphabet base32 RFC 4648 (sans padding)
BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"


class SecureRandom:
    """
    Fournisseur d'alea cryptographique.

    Toutes les valeurs secretes du service passent par cette classe.
    Les tests peuvent injecter une sous-classe deterministe.
    """

    def token_bytes(self, nbytes: int) -> bytes:
        return secrets.token_bytes(nbytes)

    def token_urlsafe(self, nbytes: int = 32) -> str:
        return secrets.token_urlsafe(nbytes)

    def token_hex(self, nbytes: int = 16) -> str:
        return secrets.token_hex(nbytes)

    def base32(self, length: int = 32) -> str:
        """Chaine base32 de `length` caracteres (5 bits d'entropie chacun)."""
        return "".join(secrets.choice(BASE32_ALPHABET) for _ in range(length))


_default_random: Optional[SecureRandom] = None


def get_secure_random() -> SecureRandom:
    """Retourne le fournisseur d'alea partage."""
    global _default_random
    if _default_random is None:
        _default_random = SecureRandom()
    return _default_random


def hash_token(token: str) -> str:
    """
    Hash SHA-256 d'un token opaque (tokens de session).

    Le token brut n'est jamais stocke, seul ce hash l'est.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# =============================================================================
# Chiffrement des secrets TOTP
# =============================================================================

def _get_encryption_key() -> bytes:
    """
    Derive une cle AES-256 a partir de la cle de configuration.

    Utilise SHA-256 pour garantir une cle de 32 bytes
    meme si la cle configuree est de taille differente.
    """
    settings = get_settings()
    key = settings.ENCRYPTION_KEY.encode("utf-8")
    return hashlib.sha256(key).digest()


def encrypt_totp_secret(secret: str) -> str:
    """
    Chiffre un secret TOTP avec AES-256-GCM.

    Args:
        secret: Secret TOTP en base32

    Returns:
        Secret chiffre en base64 (format: IV + ciphertext + tag)

    Raises:
        ValueError: Si le secret est vide ou None
    """
    if not secret:
        raise ValueError("Le secret ne peut pas etre vide")

    aesgcm = AESGCM(_get_encryption_key())

    # IV unique de 12 bytes (recommande pour GCM)
    iv = os.urandom(12)
    ciphertext = aesgcm.encrypt(iv, secret.encode("utf-8"), None)

    return base64.b64encode(iv + ciphertext).decode("utf-8")


def decrypt_totp_secret(encrypted_secret: str) -> str:
    """
    Dechiffre un secret TOTP chiffre avec AES-256-GCM.

    Verifie l'integrite du secret grace au tag GCM.

    Raises:
        ValueError: Si le secret est invalide ou corrompu
    """
    if not encrypted_secret:
        raise ValueError("Le secret chiffre ne peut pas etre vide")

    try:
        encrypted = base64.b64decode(encrypted_secret)
        iv, ciphertext = encrypted[:12], encrypted[12:]
        plaintext = AESGCM(_get_encryption_key()).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError) as e:
        raise ValueError(f"Impossible de dechiffrer le secret: {e}") from e
