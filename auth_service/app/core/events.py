import json
import logging
from typing import Any, Dict

import pika
import pika.exceptions

from .config import settings

logger = logging.getLogger(__name__)


def publish_event(routing_key: str, data: Dict[str, Any]) -> bool:
    """Publish a domain event to the topic exchange.

    Publishing is best-effort: a broker outage is logged and never fails the
    request that produced the event.
    """
    if not settings.events_enabled:
        logger.debug(f"Events disabled, skipping {routing_key}")
        return False

    try:
        params = pika.URLParameters(settings.rabbitmq_url)
        conn = pika.BlockingConnection(params)
        try:
            ch = conn.channel()
            ch.exchange_declare(exchange=settings.events_exchange, exchange_type="topic", durable=True)
            msg = json.dumps({"event": routing_key, **data}, default=str)
            ch.basic_publish(
                exchange=settings.events_exchange,
                routing_key=routing_key,
                body=msg,
                properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
            )
        finally:
            conn.close()
        logger.info(f"Published {routing_key} event")
        return True
    except pika.exceptions.AMQPError as e:
        logger.warning(f"Could not publish {routing_key} event: {e}")
        return False


def publish_user_registered(user_id: str, email: str, username: str) -> bool:
    return publish_event("user.registered", {"user_id": user_id, "email": email, "username": username})


def publish_user_deleted(user_id: str) -> bool:
    return publish_event("user.deleted", {"user_id": user_id})
