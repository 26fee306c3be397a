# order_service/events.py
import json
import logging
from typing import Optional

import aio_pika

from order_service.config import Settings, get_settings

logger = logging.getLogger(__name__)

ORDER_EVENTS_QUEUE = "order_events"


async def publish_order_event(event: str, payload: dict, settings: Optional[Settings] = None) -> bool:
    """
    Publish an order event to RabbitMQ.
    Delivery is best-effort: the order is already committed, so a broker
    outage is logged and reported as False.
    """
    settings = settings or get_settings()
    if not settings.rabbitmq_url:
        logger.debug("RabbitMQ disabled, dropping %s event", event)
        return False

    body = json.dumps({"event": event, **payload}, default=str).encode()
    try:
        connection = await aio_pika.connect_robust(settings.rabbitmq_url)
        async with connection:
            channel = await connection.channel()
            await channel.declare_queue(ORDER_EVENTS_QUEUE, durable=True)
            await channel.default_exchange.publish(
                aio_pika.Message(
                    body=body,
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=ORDER_EVENTS_QUEUE,
            )
    except Exception:
        logger.exception("Error publishing %s event", event)
        return False
    return True
