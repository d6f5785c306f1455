from redis import Redis
from redis.exceptions import RedisError
from loguru import logger
from storefront.core.config import settings

def event_key(provider: str, event_id: str) -> str:
    return f"webhook:{provider}:{event_id}"

def first_delivery(r: Redis, provider: str, event_id: str, ttl: int | None = None) -> bool:
    """True the first time an event id is seen within the dedup window.

    Redis being down is not fatal: the conditional payment-status update
    still keeps a replayed event from being applied twice.
    """
    if not event_id:
        return True
    try:
        return bool(r.set(event_key(provider, event_id), "1", nx=True,
                          ex=ttl or settings.WEBHOOK_DEDUP_TTL_SECONDS))
    except RedisError as e:
        logger.warning(f"webhook dedup unavailable for {provider}:{event_id}: {e}")
        return True

def forget(r: Redis, provider: str, event_id: str):
    """Release an event id so a delivery that failed mid-way can be retried."""
    try:
        r.delete(event_key(provider, event_id))
    except RedisError as e:
        logger.warning(f"could not release {provider}:{event_id}: {e}")
