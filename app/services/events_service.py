import json
import time
import redis
import structlog
from app.config import REDIS_URL

logger = structlog.get_logger(__name__)

r = redis.from_url(REDIS_URL, decode_responses=True)

QUEUE_CHANNEL = "events:queue"

def job_channel(job_id) -> str:
    return f"events:job:{job_id}"

class EventPublisher:
    """Publishes job lifecycle events on Redis pub/sub. Delivery is best effort."""

    def __init__(self, conn: redis.Redis = None):
        self.conn = conn or r

    def publish(self, job_id, event, **fields):
        payload = {"type": getattr(event, "value", event), "job_id": job_id, "timestamp": time.time(), **fields}
        message = json.dumps(payload, default=str)
        try:
            self.conn.publish(job_channel(job_id), message)
            self.conn.publish(QUEUE_CHANNEL, message)
        except redis.RedisError as e:
            logger.warning("event_publish_failed", job_id=job_id, event=payload["type"], error=str(e))
