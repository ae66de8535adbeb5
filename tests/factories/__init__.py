"""
Factories FactoryBoy pour les tests.

Usage:
    from tests.factories import UserFactory, MFASecretFactory

    user = UserFactory.create(db_session=db_session)
    MFASecretFactory.create(db_session=db_session, user_id=user.id, enabled=True)
"""
from tests.factories.mfa import MFARecoveryCodeFactory, MFASecretFactory
from tests.factories.session import SessionFactory
from tests.factories.sso import SSOConnectionFactory, SSOProviderFactory
from tests.factories.user import DEFAULT_TEST_PASSWORD, UserFactory

__all__ = [
    "DEFAULT_TEST_PASSWORD",
    "UserFactory",
    "SessionFactory",
    "MFASecretFactory",
    "MFARecoveryCodeFactory",
    "SSOProviderFactory",
    "SSOConnectionFactory",
]
