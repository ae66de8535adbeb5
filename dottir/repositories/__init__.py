"""
Repositories d'acces aux donnees (Credential Store)
"""
from dottir.repositories.base import BaseRepository, translate_store_errors
from dottir.repositories.mfa import MFARecoveryCodeRepository, MFASecretRepository
from dottir.repositories.session import SessionRepository
from dottir.repositories.sso import SSOConnectionRepository, SSOProviderRepository
from dottir.repositories.user import UserRepository, normalize_email

__all__ = [
    "BaseRepository",
    "translate_store_errors",
    "UserRepository",
    "normalize_email",
    "MFASecretRepository",
    "MFARecoveryCodeRepository",
    "SessionRepository",
    "SSOProviderRepository",
    "SSOConnectionRepository",
]
