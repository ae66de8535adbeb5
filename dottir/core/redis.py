"""
Client Redis pour Dottir
Challenges MFA en attente et rate limiting

Configuration via settings:
- REDIS_URL: URL de connexion Redis (vide = stockage memoire)
- REDIS_SOCKET_TIMEOUT: Timeout socket en secondes
"""
import logging
from typing import Optional

import redis
from redis.connection import ConnectionPool

from dottir.core.config import get_settings

logger = logging.getLogger(__name__)

# Pool de connexions Redis global (singleton)
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def get_redis_pool() -> Optional[ConnectionPool]:
    """
    Retourne le pool de connexions Redis global.

    Returns:
        ConnectionPool ou None si Redis n'est pas configure
    """
    global _redis_pool

    if _redis_pool is not None:
        return _redis_pool

    settings = get_settings()
    if not settings.REDIS_URL:
        logger.warning("REDIS_URL non configure, Redis desactive")
        return None

    try:
        _redis_pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            decode_responses=True,
        )
        logger.info("Pool Redis cree")
        return _redis_pool
    except (redis.RedisError, ValueError) as e:
        logger.error(f"Erreur creation pool Redis: {e}")
        return None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Retourne le client Redis global utilisant le pool de connexions.

    Retourne None si Redis n'est pas configure ou indisponible.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    pool = get_redis_pool()
    if pool is None:
        return None

    try:
        client = redis.Redis(connection_pool=pool)
        client.ping()
        _redis_client = client
        logger.info("Connexion Redis etablie via pool")
        return _redis_client
    except redis.RedisError as e:
        logger.warning(f"Impossible de se connecter a Redis: {e}")
        return None


def close_redis_client() -> None:
    """Ferme le client et le pool Redis"""
    global _redis_client, _redis_pool

    if _redis_client is not None:
        try:
            _redis_client.close()
        except redis.RedisError as e:
            logger.debug(f"Erreur fermeture client Redis: {e}")
        _redis_client = None

    if _redis_pool is not None:
        _redis_pool.disconnect()
        _redis_pool = None
