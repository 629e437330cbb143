from . import core
import json
import logging

logger = logging.getLogger(__name__)

MESSAGE_EVENTS_TOPIC = 'message-events'


async def publish(topic: str, data: dict, key: str = None):
    producer = await core.get_kafka_producer()
    if not producer:
        raise RuntimeError('Kafka producer not started')
    await producer.send_and_wait(
        topic,
        json.dumps(data, default=str).encode('utf-8'),
        key=key.encode('utf-8') if key else None,
    )


async def publish_message_event(event: str, data: dict, key: str = None) -> bool:
    """Best-effort event for downstream consumers (notifications, analytics); never blocks a send"""
    if not await core.get_kafka_producer():
        return False
    try:
        await publish(MESSAGE_EVENTS_TOPIC, {'event': event, **data}, key=key)
        return True
    except Exception as e:
        logger.warning(f"Publishing {event} to {MESSAGE_EVENTS_TOPIC} failed: {e}")
        return False
