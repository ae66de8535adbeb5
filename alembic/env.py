"""
Configuration Alembic pour les migrations de la base Dottir
"""
import os
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

# Objet de configuration Alembic
config = context.config

# Configuration du logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Metadata pour autogenerate - importer tous les modeles
from dottir.models import (  # noqa: F401,E402
    Base, User, MFASecret, MFARecoveryCode, Session, SSOProvider, SSOConnection
)

target_metadata = Base.metadata


def get_database_url() -> str:
    """Recupere l'URL de la base de donnees depuis l'environnement"""
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL non definie")
    return url


def run_migrations_offline() -> None:
    """
    Execute les migrations en mode 'offline'.
    Configure le contexte avec juste une URL.
    """
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Execute les migrations en mode 'online'.
    Cree un Engine et associe une connexion au contexte.
    """
    connectable = create_engine(get_database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
