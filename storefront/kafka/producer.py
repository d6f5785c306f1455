from kafka import KafkaProducer
from loguru import logger
import json
from storefront.core.config import settings

_producer = None

def get_producer():
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    if not settings.KAFKA_ENABLED:
        logger.debug(f"kafka disabled, dropping {value.get('type')} for {key}")
        return
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def publish_order_event(event: dict):
    """Post-commit emission; a broker failure is logged, never raised."""
    try:
        send(settings.TOPIC_ORDER_EVENTS, key=str(event.get("order_id", "")), value=event)
    except Exception:
        logger.exception(f"failed to publish {event.get('type')} for order {event.get('order_id')}")
