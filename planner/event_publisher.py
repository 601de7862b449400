"""
Planner Event Publisher - Publishes plan events and reminders to NATS JetStream.

Stream: PLANNER_EVENTS
Subjects:
  plans.materialized.{owner_id}   one per committed plan
  reminders.{owner_id}            one per scheduled reminder

Fire-and-forget: the planner publishes and moves on. Downstream consumers
(dashboards, notification workers) subscribe asynchronously.
"""

import json
import logging
from typing import Any, Dict, Optional

import nats
from nats.aio.client import Client as NATSClient

from planner.config import config

logger = logging.getLogger("planner.events")

EVENT_SUBJECTS = ["plans.>", "reminders.>"]


def materialized_subject(owner_id: str) -> str:
    return f"plans.materialized.{_subject_token(owner_id)}"


def reminder_subject(owner_id: str) -> str:
    return f"reminders.{_subject_token(owner_id)}"


def _subject_token(owner_id: str) -> str:
    # NATS tokens may not contain '.', '*', '>' or whitespace
    return "".join("_" if c in ".*> \t" else c for c in owner_id).replace(":", "-")


class PlanEventPublisher:
    """Publishes PlanMaterialized events and reminders. Never raises to callers."""

    def __init__(self, stream: str = config.NATS_STREAM):
        self._stream = stream
        self._nc: Optional[NATSClient] = None
        self._js = None
        self._connected = False
        self._published = 0

    async def connect(self) -> bool:
        """Connect to NATS and ensure the planner stream exists."""
        try:
            self._nc = await nats.connect(
                config.NATS_URL,
                name="planner-event-publisher",
                max_reconnect_attempts=3,
                reconnect_time_wait=1,
            )
            self._js = self._nc.jetstream()

            try:
                await self._js.stream_info(self._stream)
                logger.info(f"✅ NATS stream '{self._stream}' exists")
            except Exception:
                from nats.js.api import StreamConfig, RetentionPolicy
                stream_config = StreamConfig(
                    name=self._stream,
                    subjects=EVENT_SUBJECTS,
                    retention=RetentionPolicy.LIMITS,
                    max_age=86400 * 30,   # 30 days
                    max_bytes=256 * 1024 * 1024,  # 256MB
                )
                await self._js.add_stream(stream_config)
                logger.info(f"✅ Created NATS stream '{self._stream}'")

            self._connected = True
            logger.info("✅ Plan event publisher connected")
            return True

        except Exception as e:
            logger.warning(f"⚠️ Plan event publisher connection failed (non-fatal): {e}")
            self._connected = False
            return False

    async def publish(self, subject: str, payload: Dict[str, Any]) -> bool:
        """
        Publish a JSON payload.

        Returns:
            True if published, False if unavailable (non-fatal)
        """
        if not self._connected or not self._js:
            return False
        try:
            data = json.dumps(payload, default=str).encode()
            await self._js.publish(subject, data)
            self._published += 1
            logger.debug(f"📤 Published → {subject} ({len(data)} bytes)")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Publish to {subject} failed (non-fatal): {e}")
            return False

    async def publish_plan_materialized(self, owner_id: str, payload: Dict[str, Any]) -> bool:
        return await self.publish(materialized_subject(owner_id), payload)

    async def publish_reminder(self, owner_id: str, payload: Dict[str, Any]) -> bool:
        return await self.publish(reminder_subject(owner_id), payload)

    async def disconnect(self):
        """Graceful shutdown."""
        if self._nc:
            try:
                await self._nc.drain()
                await self._nc.close()
            except Exception as e:
                logger.debug(f"NATS close error ignored: {e}")
        self._connected = False
        logger.info("Plan event publisher disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def get_metrics(self) -> Dict[str, Any]:
        return {"connected": self._connected, "stream": self._stream, "published": self._published}
