"""
Module de securite pour Dottir
Hashing des mots de passe et des codes de secours (bcrypt),
politique de robustesse des mots de passe a l'inscription

Securite production:
- bcrypt avec cost factor 12
- Hash factice pour un timing constant sur email inconnu
"""
import logging
import re
from functools import lru_cache
from typing import Optional

import bcrypt

logger = logging.getLogger(__name__)

# Cost factor bcrypt (12 minimum pour production)
BCRYPT_COST = 12

# Mot de passe du hash factice (timing-safe login, evite l'enumeration des comptes)
_DUMMY_PASSWORD = "dummy_password_never_used"


class SecurityError(Exception):
    """Exception de base pour les erreurs de securite"""
    pass


class PasswordValidationError(SecurityError, ValueError):
    """
    Erreur de validation de mot de passe.

    Sous-classe de ValueError: levee dans un validateur pydantic, elle
    devient une erreur de validation (422).
    """


def hash_password(password: str, rounds: int = BCRYPT_COST) -> str:
    """
    Hash un mot de passe (ou un code de secours normalise) avec bcrypt.

    Args:
        password: Valeur en clair
        rounds: Cost factor bcrypt

    Returns:
        Hash bcrypt

    Raises:
        PasswordValidationError: Si la valeur est vide ou None
    """
    if not password:
        raise PasswordValidationError("Le mot de passe ne peut pas etre vide")

    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verifie une valeur contre son hash bcrypt.
    Resistant aux timing attacks grace a bcrypt.checkpw.

    Returns:
        True si la valeur correspond, False sinon
    """
    if not plain_password or not hashed_password:
        return False

    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except ValueError as e:
        # Hash invalide
        logger.debug(f"Erreur verification mot de passe: {e}")
        return False


@lru_cache()
def get_dummy_hash() -> str:
    """
    Hash bcrypt factice, verifie quand l'utilisateur n'existe pas
    pour garder un temps de reponse constant.
    """
    return hash_password(_DUMMY_PASSWORD)


# ============================================
# Password Validation
# ============================================

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\/'`~;]")


def validate_password_strength(password: str, email: Optional[str] = None) -> bool:
    """
    Valide la force d'un mot de passe a l'inscription.

    Regles:
    - Entre 8 et 128 caracteres
    - Au moins une majuscule, une minuscule et un chiffre
    - Au moins un caractere special
    - Ne contient pas la partie locale de l'email

    Returns:
        True si le mot de passe est valide

    Raises:
        PasswordValidationError: Si le mot de passe ne respecte pas les regles
    """
    if not password:
        raise PasswordValidationError("Le mot de passe ne peut pas etre vide")

    if len(password) < PASSWORD_MIN_LENGTH:
        raise PasswordValidationError(
            f"Le mot de passe doit contenir au moins {PASSWORD_MIN_LENGTH} caracteres"
        )
    if len(password) > PASSWORD_MAX_LENGTH:
        raise PasswordValidationError(
            f"Le mot de passe ne peut pas depasser {PASSWORD_MAX_LENGTH} caracteres"
        )

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Le mot de passe doit contenir au moins une majuscule")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Le mot de passe doit contenir au moins une minuscule")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Le mot de passe doit contenir au moins un chiffre")
    if not _SPECIAL_CHARACTERS.search(password):
        raise PasswordValidationError(
            "Le mot de passe doit contenir au moins un caractere special"
        )

    local_part = (email or "").split("@")[0].lower()
    if len(local_part) >= 3 and local_part in password.lower():
        raise PasswordValidationError("Le mot de passe ne doit pas contenir l'email")

    return True
