"""
Modeles SQLAlchemy de Dottir
"""
from dottir.models.base import Base, TimestampMixin, UTCDateTime, utc_now
from dottir.models.mfa import MFARecoveryCode, MFASecret
from dottir.models.session import Session, SessionEndReason
from dottir.models.sso import SSOConnection, SSOProvider
from dottir.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    "User",
    "MFASecret",
    "MFARecoveryCode",
    "Session",
    "SessionEndReason",
    "SSOProvider",
    "SSOConnection",
]
