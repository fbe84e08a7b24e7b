import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .models import ClassifiedRecord

log = logging.getLogger("NazarGateway.Broker")


def build_broker_message(topic: str, client_id: str, record: ClassifiedRecord) -> Dict[str, Any]:
    """Envelope for the downstream channel, keyed by path like a partitioned topic."""
    return {
        "topic": topic,
        "key": record.path,
        "value": record.to_dict(),
        "timestamp": str(record.timestamp),
        "headers": {"clientId": client_id},
    }


class BrokerPublisher:
    """
    Best-effort HTTP publisher for classified change events.

    Failures are logged and counted, never raised: the broker is a side
    channel and must not affect ingestion or the durable write.
    """

    def __init__(self, url: str, topic: str, client_id: str, timeout: float = 5.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.topic = topic
        self.client_id = client_id
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self.published = 0
        self.failed = 0
        self.last_error: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def start(self):
        if not self.enabled:
            log.warning("No broker URL configured. Events will not be published downstream.")
            return
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        log.info(f"Broker publisher ready: {self.url} (topic '{self.topic}')")

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
            log.info("Broker publisher session closed.")

    async def publish(self, record: ClassifiedRecord) -> bool:
        if not self.enabled:
            return False
        if self._session is None:
            await self.start()

        payload = build_broker_message(self.topic, self.client_id, record)
        try:
            async with self._session.post(self.url, json=payload) as response:
                response.raise_for_status()
            self.published += 1
            log.debug(f"Message published for file: {record.path}")
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.failed += 1
            self.last_error = str(e) or type(e).__name__
            log.error(f"Failed to publish message for {record.path} to {self.url}: {self.last_error}")
        except Exception as e:
            self.failed += 1
            self.last_error = str(e) or type(e).__name__
            log.error(f"An unexpected error occurred while publishing {record.path}: {e}", exc_info=True)
        return False

    def status(self) -> Dict[str, Any]:
        if not self.enabled:
            return {"status": "disabled"}
        return {
            "status": "degraded" if self.last_error and self.failed > 0 else "ok",
            "topic": self.topic,
            "published": self.published,
            "failed": self.failed,
            "last_error": self.last_error,
        }
