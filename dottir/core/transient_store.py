"""
Stockage transitoire a duree de vie limitee.

Utilise pour les challenges MFA en attente et les compteurs du rate limiter.

Backends:
- RedisTransientStore: SETEX / GETDEL / INCR+EXPIRE, partage entre instances
- MemoryTransientStore: fallback en memoire protege par un verrou
  (ATTENTION: non partage entre workers)

Toutes les valeurs sont des dictionnaires serialises en JSON.
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from dottir.core.redis import get_redis_client

logger = logging.getLogger(__name__)


class TransientStore:
    """Interface commune des backends transitoires."""

    def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def pop(self, key: str) -> Optional[Dict[str, Any]]:
        """Lit et supprime la valeur de maniere atomique."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def incr(self, key: str, ttl_seconds: int) -> int:
        """
        Incremente un compteur.

        Le TTL est pose a la creation du compteur uniquement
        (fenetre fixe).
        """
        raise NotImplementedError


class MemoryTransientStore(TransientStore):
    """
    Backend en memoire.

    Args:
        clock: Source de temps en secondes (injectable pour les tests)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[float, Any]] = {}

    def _live(self, key: str) -> Optional[Tuple[float, Any]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[0] <= self._clock():
            del self._data[key]
            return None
        return entry

    def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl_seconds, json.dumps(value))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._live(key)
            return json.loads(entry[1]) if entry else None

    def pop(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            del self._data[key]
            return json.loads(entry[1])

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._data[key] = (self._clock() + ttl_seconds, 1)
                return 1
            count = entry[1] + 1
            self._data[key] = (entry[0], count)
            return count

    def clear(self) -> None:
        """Vide le store (tests)."""
        with self._lock:
            self._data.clear()


class RedisTransientStore(TransientStore):
    """Backend Redis."""

    def __init__(self, client: redis.Redis, prefix: str = "dottir:"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        self.client.setex(self._key(key), ttl_seconds, json.dumps(value))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(self._key(key))
        return json.loads(raw) if raw else None

    def pop(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.client.getdel(self._key(key))
        return json.loads(raw) if raw else None

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def incr(self, key: str, ttl_seconds: int) -> int:
        full_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.incr(full_key)
        pipe.expire(full_key, ttl_seconds, nx=True)
        count, _ = pipe.execute()
        return int(count)


_store: Optional[TransientStore] = None


def get_transient_store() -> TransientStore:
    """
    Retourne le store transitoire partage.

    Redis si disponible, sinon fallback memoire.
    """
    global _store
    if _store is not None:
        return _store

    client = get_redis_client()
    if client is not None:
        _store = RedisTransientStore(client)
    else:
        logger.warning(
            "Store transitoire en memoire: challenges MFA et rate limiting "
            "non partages entre instances."
        )
        _store = MemoryTransientStore()
    return _store


def reset_transient_store() -> None:
    """Oublie le store courant (tests, arret de l'application)."""
    global _store
    _store = None
