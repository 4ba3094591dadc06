"""Verbindet das Gateway mit Redis und stellt einen synchronen Client für
den Redis-Session-Store bereit."""
import redis

from app.core.config import Settings, settings as default_settings


def get_redis_client(config: Settings = default_settings) -> redis.Redis:
    # Synchrone Redis-Verbindung; decode_responses=True liefert Strings statt Bytes.
    client = redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        decode_responses=True,
        socket_timeout=config.read_timeout_seconds,
        socket_connect_timeout=config.connect_timeout_seconds,
    )
    client.ping()
    return client
