"""
Compte a rebours d'inactivite cote client.

Modele du minuteur affiche au client: il avertit avant l'expiration
pour inactivite et se rearme sur l'activite observee. Il est purement
indicatif, seul SessionService.touch fait autorite.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, Optional

DEFAULT_ACTIVITY_EVENTS: FrozenSet[str] = frozenset(
    {"mousedown", "keydown", "scroll", "touchstart"}
)


@dataclass
class InactivityCountdown:
    """
    Minuteur d'inactivite.

    Attributs:
        timeout: Duree d'inactivite avant expiration
        warning_threshold: Delai avant expiration a partir duquel avertir
        activity_events: Evenements qui rearment le minuteur
    """

    timeout: timedelta = timedelta(minutes=30)
    warning_threshold: timedelta = timedelta(minutes=5)
    activity_events: FrozenSet[str] = DEFAULT_ACTIVITY_EVENTS
    last_activity_at: Optional[datetime] = field(default=None)

    def __post_init__(self) -> None:
        if self.warning_threshold >= self.timeout:
            raise ValueError("warning_threshold doit etre inferieur a timeout")

    def arm(self, confirmed_at: datetime) -> None:
        """Arme le minuteur a partir d'un touch confirme par le serveur."""
        self.last_activity_at = confirmed_at

    def observe(self, event: str, at: datetime) -> bool:
        """
        Enregistre un evenement client.

        Returns:
            True si l'evenement a rearme le minuteur
        """
        if event not in self.activity_events or self.last_activity_at is None:
            return False
        if self.is_elapsed(at):
            # Trop tard, la session serveur est deja expiree
            return False
        self.last_activity_at = at
        return True

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.last_activity_at is None:
            return None
        return self.last_activity_at + self.timeout

    @property
    def warn_at(self) -> Optional[datetime]:
        if self.last_activity_at is None:
            return None
        return self.expires_at - self.warning_threshold

    def should_warn(self, now: datetime) -> bool:
        if self.last_activity_at is None:
            return False
        return self.warn_at <= now < self.expires_at

    def is_elapsed(self, now: datetime) -> bool:
        if self.last_activity_at is None:
            return True
        return now >= self.expires_at

    def minutes_left(self, now: datetime) -> int:
        """Minutes restantes, arrondies a la minute superieure."""
        if self.is_elapsed(now):
            return 0
        remaining = (self.expires_at - now).total_seconds()
        return int(-(-remaining // 60))
