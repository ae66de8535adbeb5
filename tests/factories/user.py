"""
Factory pour creer des objets User de test.
"""
import factory
from factory import Faker, Sequence

from dottir.core.security import hash_password
from dottir.models.user import User

# Mot de passe par defaut pour les tests
DEFAULT_TEST_PASSWORD = "Dottir2026$kQ9vX!"

# Cout bcrypt minimal: les tests n'evaluent pas la resistance du hash
TEST_BCRYPT_ROUNDS = 4


class UserFactory(factory.Factory):
    """
    Factory pour creer des User de test.

    Usage:
        user = UserFactory.create(db_session=db_session)
        user = UserFactory.create(db_session=db_session, password_hash=None)  # identite SSO
        user = UserFactory.create_with_password("autre", db_session=db_session)
    """

    class Meta:
        model = User

    email = Sequence(lambda n: f"user{n}@test.dottir.dev")
    password_hash = factory.LazyFunction(
        lambda: hash_password(DEFAULT_TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS)
    )
    full_name = Faker("name")
    avatar_url = None
    role = "member"
    mfa_enabled = False
    is_active = True

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """
        Override _create pour gerer la session DB.
        """
        db_session = kwargs.pop("db_session", None)

        obj = super()._create(model_class, *args, **kwargs)

        if db_session:
            db_session.add(obj)
            db_session.flush()

        return obj

    @classmethod
    def create_with_password(cls, password: str, **kwargs):
        """
        Cree un utilisateur avec un mot de passe specifique.
        """
        kwargs["password_hash"] = hash_password(password, rounds=TEST_BCRYPT_ROUNDS)
        return cls.create(**kwargs)
