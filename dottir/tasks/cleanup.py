"""
Taches de nettoyage des sessions pour Dottir.

- sweep: marque expirees les sessions ayant depasse une duree de vie
  (plafond absolu d'abord, puis inactivite). Ne touche jamais une
  session active.
- purge: supprime les sessions terminees depuis plus de N jours.

Usage:
    # Via CLI
    python -m dottir.tasks.cleanup --all
    python -m dottir.tasks.cleanup --sweep
    python -m dottir.tasks.cleanup --purge --days 30

    # Programmatiquement
    from dottir.tasks.cleanup import cleanup_all
    cleanup_all(db_session)
"""
import argparse
import logging
import sys
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from dottir.core.config import get_settings
from dottir.repositories.session import SessionRepository
from dottir.services.session import SessionService

logger = logging.getLogger(__name__)


def _session_service(db: Session) -> SessionService:
    settings = get_settings()
    return SessionService(
        session_repository=SessionRepository(db),
        inactivity_minutes=settings.SESSION_INACTIVITY_MINUTES,
        absolute_expiry_hours=settings.SESSION_ABSOLUTE_EXPIRY_HOURS,
        warning_minutes=settings.SESSION_WARNING_MINUTES,
    )


def sweep_sessions(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Marque les sessions expirees.

    Returns:
        Nombre de sessions marquees par raison de fin
    """
    counts = _session_service(db).sweep_expired(now=now)
    total = sum(counts.values())
    if total > 0:
        logger.info(f"Cleanup: {total} sessions marquees expirees", extra={"counts": counts})
    return counts


def purge_sessions(db: Session, days: Optional[int] = None) -> int:
    """
    Supprime les sessions terminees depuis plus de `days` jours
    (defaut SESSION_RETENTION_DAYS).
    """
    days = days if days is not None else get_settings().SESSION_RETENTION_DAYS
    deleted = _session_service(db).purge_ended(older_than_days=days)
    if deleted > 0:
        logger.info(f"Cleanup: {deleted} sessions terminees supprimees (> {days} jours)")
    return deleted


def cleanup_all(db: Session, days: Optional[int] = None) -> Dict[str, int]:
    """
    Execute toutes les taches de nettoyage.

    Returns:
        Dict avec le nombre d'elements traites par categorie
    """
    results = dict(sweep_sessions(db))
    results["purged"] = purge_sessions(db, days=days)

    logger.info(f"Cleanup total: {sum(results.values())} elements traites")
    return results


def main(argv: Optional[List[str]] = None) -> int:
    """Point d'entree CLI pour les taches de nettoyage."""
    parser = argparse.ArgumentParser(description="Sweep and purge Dottir sessions")
    parser.add_argument("--all", action="store_true", help="Run all cleanup tasks")
    parser.add_argument("--sweep", action="store_true", help="Mark expired sessions")
    parser.add_argument("--purge", action="store_true", help="Delete old ended sessions")
    parser.add_argument("--days", type=int, default=None, help="Retention in days for --purge")

    args = parser.parse_args(argv)

    if not any([args.all, args.sweep, args.purge]):
        parser.print_help()
        return 1

    from dottir.core.database import SessionLocal
    from dottir.core.logging import configure_logging

    configure_logging(level=get_settings().LOG_LEVEL, json_format=True)

    db = SessionLocal()
    try:
        if args.all:
            results = cleanup_all(db, days=args.days)
        else:
            results = {}
            if args.sweep:
                results.update(sweep_sessions(db))
            if args.purge:
                results["purged"] = purge_sessions(db, days=args.days)
    finally:
        db.close()

    for name, count in results.items():
        print(f"  {name}: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
