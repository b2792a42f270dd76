from kafka import KafkaProducer
import json
from storefront_payments.core.config import settings

_producer = None

def get_producer() -> KafkaProducer:
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[s.strip() for s in settings.KAFKA_BOOTSTRAP.split(",") if s.strip()],
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def emit(event: dict):
    """Emit to payment.events (configurable); no-op when no broker is configured."""
    if not settings.KAFKA_BOOTSTRAP:
        return
    p = get_producer()
    p.send(settings.TOPIC_PAYMENT_EVENTS, key=str(event.get("order_reference") or event.get("order_id", "")), value=event)
    p.flush(5)
