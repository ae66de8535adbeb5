"""
Rate limiter a fenetre fixe, cle = adresse source.

Consulte par AuthService avant toute operation d'authentification.
Un refus leve RateLimitedError, distinct d'un echec d'authentification.

Backend: TransientStore (Redis INCR+EXPIRE, ou memoire en fallback).
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from dottir.core.transient_store import TransientStore
from dottir.services.exceptions import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class FixedWindowRateLimiter:
    """
    Limite le nombre de requetes par cle sur une fenetre fixe.

    Args:
        store: Store transitoire portant les compteurs
        limit: Requetes autorisees par fenetre (defaut 60)
        window_seconds: Duree de la fenetre (defaut 60)
        enabled: Desactive le controle si False
        clock: Source de temps en secondes
    """

    def __init__(
        self,
        store: TransientStore,
        limit: int = 60,
        window_seconds: int = 60,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.enabled = enabled
        self.clock = clock

    def check(self, key: Optional[str]) -> RateLimitDecision:
        """
        Comptabilise une requete et indique si elle est autorisee.
        """
        if not self.enabled:
            return RateLimitDecision(True, self.limit, self.limit, 0)

        now = self.clock()
        window = int(now // self.window_seconds)
        retry_after = max(1, int((window + 1) * self.window_seconds - now))

        count = self.store.incr(f"ratelimit:{key or 'unknown'}:{window}", self.window_seconds)
        allowed = count <= self.limit
        return RateLimitDecision(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            retry_after=0 if allowed else retry_after,
        )

    def enforce(self, key: Optional[str]) -> RateLimitDecision:
        """
        Comme check(), mais leve RateLimitedError si la limite est atteinte.
        """
        decision = self.check(key)
        if not decision.allowed:
            logger.warning(f"Rate limit depasse pour {key}")
            raise RateLimitedError(retry_after=decision.retry_after)
        return decision
