"""
Change Feed - Redis pub/sub notifications for the jobs table

Collectors and the job store publish one JSON message per row change on a
single channel; the worker subscribes and reacts to rows that land in
``collected``. Messages use the database-webhook shape:

    {"type": "INSERT" | "UPDATE" | "DELETE",
     "table": "jobs",
     "record": {...new row...},
     "old_record": {...previous row...} | null}

The feed is a latency optimisation only. Publishing never raises, and the
listener reconnects forever; the scheduler's poll path guarantees progress
while the feed is down.

Usage:
    feed = ChangeFeed(redis_url="redis://localhost:6379", channel="jobs:changes")
    await feed.publish("INSERT", job.to_record())

    async for event in feed.listen():
        ...
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

JOBS_TABLE = "jobs"


@dataclass
class ChangeEvent:
    """A single row change on a watched table."""

    type: str
    table: str
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = field(default=None)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            type=str(payload.get("type", "")).upper(),
            table=payload.get("table", ""),
            record=payload.get("record"),
            old_record=payload.get("old_record"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "table": self.table,
            "record": self.record,
            "old_record": self.old_record,
        }

    @property
    def collected_job_id(self) -> Optional[str]:
        """Job id when this event leaves a live jobs row in ``collected``."""
        if self.table != JOBS_TABLE or not self.record:
            return None
        if self.record.get("status") != "collected" or self.record.get("is_deleted"):
            return None
        return self.record.get("id")


class ChangeFeed:
    """
    Publisher and subscriber for job-table change events.

    Attributes:
        redis_url: Redis connection URL
        channel: Pub/sub channel name
        reconnect_delay: Seconds to wait before resubscribing after a drop
        publish_timeout: Upper bound on a single publish, including connecting
        connect_timeout: Socket connect timeout for the Redis client
    """

    def __init__(
        self,
        redis_url: str,
        channel: str = "jobs:changes",
        reconnect_delay: float = 5.0,
        publish_timeout: float = 2.0,
        connect_timeout: float = 5.0,
    ):
        self.redis_url = redis_url
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.publish_timeout = publish_timeout
        self.connect_timeout = connect_timeout
        self.redis: Optional[redis.Redis] = None

    async def _ensure_connected(self) -> redis.Redis:
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
            )
        return self.redis

    async def publish(
        self,
        event_type: str,
        record: Dict[str, Any],
        old_record: Optional[Dict[str, Any]] = None,
        table: str = JOBS_TABLE,
    ) -> bool:
        """
        Publish a change event.

        Bounded by ``publish_timeout`` so a hung Redis cannot stall the
        caller.

        Returns:
            True if the message was handed to Redis, False on any failure
        """
        event = ChangeEvent(type=event_type, table=table, record=record, old_record=old_record)
        try:
            await asyncio.wait_for(self._send(event), timeout=self.publish_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"[change_feed] Publish of {event_type} for {record.get('id')} "
                f"timed out after {self.publish_timeout}s"
            )
            return False
        except Exception as e:
            logger.warning(f"[change_feed] Failed to publish {event_type} for {record.get('id')}: {e}")
            return False

    async def _send(self, event: ChangeEvent) -> None:
        client = await self._ensure_connected()
        await client.publish(self.channel, json.dumps(event.to_payload(), default=str))

    async def listen(self) -> AsyncIterator[ChangeEvent]:
        """
        Yield change events until cancelled.

        Connection errors are logged and followed by a resubscribe after
        ``reconnect_delay`` seconds. Malformed messages are skipped.
        """
        while True:
            pubsub = None
            try:
                client = await self._ensure_connected()
                pubsub = client.pubsub(ignore_subscribe_messages=True)
                await pubsub.subscribe(self.channel)
                logger.info(f"[change_feed] Subscribed to {self.channel}")

                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    event = self._decode(message.get("data"))
                    if event is not None:
                        yield event

                logger.warning("[change_feed] Subscription ended, resubscribing")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"[change_feed] Connection unstable ({e}); relying on polling, "
                    f"retrying in {self.reconnect_delay}s"
                )
            finally:
                if pubsub is not None:
                    try:
                        await pubsub.aclose()
                    except Exception as e:
                        logger.debug(f"[change_feed] Error closing pubsub: {e}")

            await asyncio.sleep(self.reconnect_delay)

    def _decode(self, data: Any) -> Optional[ChangeEvent]:
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            logger.warning(f"[change_feed] Ignoring non-JSON message: {str(data)[:100]}")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"[change_feed] Ignoring unexpected payload: {str(data)[:100]}")
            return None
        return ChangeEvent.from_payload(payload)

    async def close(self) -> None:
        if self.redis:
            await self.redis.aclose()
            self.redis = None
