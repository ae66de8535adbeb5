"""
Base Repository generique pour Dottir
Fournit les operations communes a tous les models

Ce module contient:
- BaseRepository: lecture par cle, creation, transaction et comptage
- translate_store_errors: conversion des erreurs SQLAlchemy en
  StoreUnavailableError pour les couches service
"""
import functools
import inspect
import logging
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dottir.models.base import Base
from dottir.services.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# Type generique pour le model
ModelType = TypeVar("ModelType", bound=Base)


def translate_store_errors(func):
    """
    Decorateur: toute erreur SQLAlchemy devient StoreUnavailableError.

    Supporte les fonctions synchrones et les coroutines.
    """
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"Erreur stockage dans {func.__qualname__}: {e}")
                raise StoreUnavailableError(reason=type(e).__name__) from e
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Erreur stockage dans {func.__qualname__}: {e}")
            raise StoreUnavailableError(reason=type(e).__name__) from e
    return wrapper


class BaseRepository(Generic[ModelType]):
    """
    Repository generique

    Usage:
        class UserRepository(BaseRepository[User]):
            model = User
    """

    # Type du model - doit etre defini dans les sous-classes
    model: Type[ModelType]

    def __init__(self, session: Session):
        """
        Initialise le repository avec une session DB

        Args:
            session: Session SQLAlchemy active
        """
        self.session = session

    def get(self, id: Any) -> Optional[ModelType]:
        """
        Recupere un objet par sa cle primaire

        Returns:
            L'objet trouve ou None
        """
        return self.session.get(self.model, id)

    def create(self, data: Dict[str, Any]) -> ModelType:
        """
        Cree un nouvel objet

        Args:
            data: Dictionnaire avec les donnees de l'objet

        Returns:
            L'objet cree
        """
        obj = self.model(**data)
        self.session.add(obj)
        self.session.flush()  # Pour obtenir l'ID
        return obj

    def commit(self) -> None:
        """Valide la transaction courante."""
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def count(self) -> int:
        """Compte le nombre total d'objets"""
        return self.session.query(self.model).count()
