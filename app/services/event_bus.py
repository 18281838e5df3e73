import asyncio
import json
import logging

from app.config import GCP_PROJECT_ID, GCP_PUBSUB_TOPIC

logger = logging.getLogger(__name__)

try:  # Optional dependency for GCP Pub/Sub
    from google.cloud import pubsub_v1  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    pubsub_v1 = None


class NotificationBus:
    """In-memory pub/sub of notify intents, keyed by responder id.

    Delivery (SMS, push) happens in whatever consumes these queues.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._global_subscribers: set[asyncio.Queue] = set()

    def subscribe_all(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._global_subscribers.add(queue)
        return queue

    def unsubscribe_all(self, queue: asyncio.Queue) -> None:
        self._global_subscribers.discard(queue)

    def subscribe(self, responder_id: str) -> asyncio.Queue:
        """Subscribe to notify intents addressed to one responder."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(responder_id, set()).add(queue)
        return queue

    def unsubscribe(self, responder_id: str, queue: asyncio.Queue) -> None:
        if responder_id in self._subscribers:
            self._subscribers[responder_id].discard(queue)
            if not self._subscribers[responder_id]:
                del self._subscribers[responder_id]

    def _fan_out(self, responder_id: str, event: dict) -> None:
        for queue in self._subscribers.get(responder_id, set()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Notify queue full for responder %s", responder_id)

        for queue in self._global_subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Global notify queue full")

    async def publish(self, responder_id: str, event: dict) -> None:
        """Emit a notify intent for a responder."""
        event["responder_id"] = responder_id
        self._fan_out(responder_id, event)


class PubSubNotificationBus(NotificationBus):
    """Also forwards notify intents to a Pub/Sub topic for the delivery workers."""

    def __init__(self, project_id: str, topic: str) -> None:
        super().__init__()
        self._publisher = pubsub_v1.PublisherClient()  # type: ignore[call-arg]
        if topic.startswith("projects/"):
            self._topic_path = topic
        else:
            self._topic_path = self._publisher.topic_path(project_id, topic)

    async def publish(self, responder_id: str, event: dict) -> None:
        event["responder_id"] = responder_id
        self._fan_out(responder_id, event)
        payload = json.dumps(event).encode("utf-8")
        try:
            self._publisher.publish(
                self._topic_path,
                payload,
                responder_id=responder_id,
                event_type=str(event.get("type", "")),
            )
        except Exception as exc:
            logger.error("Failed to publish notify intent to Pub/Sub: %s", exc)


if GCP_PROJECT_ID and GCP_PUBSUB_TOPIC and pubsub_v1 is not None:
    logger.info("Using GCP Pub/Sub for responder notify intents")
    notification_bus: NotificationBus = PubSubNotificationBus(GCP_PROJECT_ID, GCP_PUBSUB_TOPIC)
else:
    if GCP_PROJECT_ID or GCP_PUBSUB_TOPIC:
        logger.warning("Pub/Sub config set but google-cloud-pubsub not installed; notify intents stay in memory")
    notification_bus = NotificationBus()
