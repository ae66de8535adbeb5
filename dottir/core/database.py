"""
Configuration de la connexion a la base de donnees
"""
from functools import lru_cache
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from dottir.core.config import get_settings

# Importer Base depuis models pour coherence
from dottir.models.base import Base  # noqa: F401


@lru_cache()
def get_engine() -> Engine:
    """
    Cree le moteur SQLAlchemy a la premiere utilisation.
    """
    settings = get_settings()
    kwargs = {"pool_pre_ping": True}
    if not settings.DATABASE_URL.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20)
    return create_engine(settings.DATABASE_URL, **kwargs)


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Fabrique de sessions liee au moteur principal."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def SessionLocal() -> Session:
    """Ouvre une nouvelle session de base de donnees."""
    return get_session_factory()()
