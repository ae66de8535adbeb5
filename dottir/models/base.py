"""
Classes de base et mixins pour les modeles SQLAlchemy
Timestamps automatiques en UTC
Compatible SQLAlchemy 2.0 avec Mapped types
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


# BIGINT en PostgreSQL, INTEGER en SQLite (autoincrement sur rowid)
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class UTCDateTime(TypeDecorator):
    """
    DateTime toujours timezone-aware en UTC.

    Certains backends (SQLite) renvoient des datetimes naifs:
    ils sont relus comme UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Retourne l'heure actuelle en UTC (timezone-aware)"""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Classe de base pour tous les modeles SQLAlchemy"""
    pass


class TimestampMixin:
    """
    Mixin pour ajouter created_at et updated_at automatiques.
    updated_at est mis a jour automatiquement a chaque modification.
    """
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        server_default=func.now(),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False
    )
