# worker.py
# Assignment loop: every tick, pull a batch of conversations off the Redis
# ingestion list and submit it to the API's POST /assignments.
# A tick that arrives while the previous batch is still in flight is skipped.

import asyncio
import json
import logging
import time

import httpx
import redis.asyncio as aioredis

from config import (
    API_TIMEOUT_SECONDS,
    API_URL,
    BATCH_SIZE,
    CONVERSATION_QUEUE_KEY,
    LOG_FORMAT,
    LOG_LEVEL,
    MAX_BATCHES,
    REDIS_RETRY_SECONDS,
    REDIS_URL,
    TICK_SECONDS,
)

logger = logging.getLogger(__name__)


async def pop_batch(redis: aioredis.Redis, size: int) -> list[dict]:
    """Pop up to ``size`` items. Undecodable items are logged and dropped."""
    raw = await redis.lpop(CONVERSATION_QUEUE_KEY, size)
    conversations = []
    for item in raw or []:
        try:
            conversations.append(json.loads(item))
        except json.JSONDecodeError as e:
            logger.error("Skipping undecodable conversation %r: %s", item, e)
    return conversations


async def submit_batch(client: httpx.AsyncClient, conversations: list[dict]) -> dict:
    resp = await client.post("/assignments", json={"conversations": conversations})
    resp.raise_for_status()
    return resp.json()


class AssignmentLoop:

    def __init__(
        self,
        redis: aioredis.Redis,
        client: httpx.AsyncClient,
        *,
        batch_size: int = BATCH_SIZE,
        tick_seconds: float = TICK_SECONDS,
        max_batches: int = MAX_BATCHES,
    ):
        self.redis = redis
        self.client = client
        self.batch_size = batch_size
        self.tick_seconds = tick_seconds
        self.max_batches = max_batches
        self.batches_done = 0
        self.skipped_ticks = 0
        self._in_flight: asyncio.Task | None = None

    def finished(self) -> bool:
        return self.max_batches > 0 and self.batches_done >= self.max_batches

    async def run_batch(self) -> dict | None:
        """
        Run one batch. Returns the API's assignment response, or None when
        nothing was queued or the batch could not be submitted. Failed
        conversations are logged and never retried.
        """
        try:
            conversations = await pop_batch(self.redis, self.batch_size)
        except aioredis.RedisError as e:
            logger.error("Redis error: %s. Retrying in %.0fs", e, REDIS_RETRY_SECONDS)
            await asyncio.sleep(REDIS_RETRY_SECONDS)
            return None

        if not conversations:
            logger.debug("No conversations queued")
            return None

        number = self.batches_done + 1
        logger.info("Starting assignment batch %d with %d conversations", number, len(conversations))
        start = time.perf_counter()
        try:
            body = await submit_batch(self.client, conversations)
        except httpx.HTTPError as e:
            logger.error("Assignment batch %d could not be submitted: %s", number, e)
            return None
        finally:
            self.batches_done += 1
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "Completed assignment batch %d in %.1fms: %d assigned, %d failed",
            number, elapsed_ms, len(body["assigned"]), body["failed_count"],
        )
        if body["failed_count"]:
            logger.warning("failed to assign %d conversations in batch %d", body["failed_count"], number)
        return body

    def tick(self) -> None:
        if self._in_flight is not None and not self._in_flight.done():
            self.skipped_ticks += 1
            logger.info("Assignment in progress, skipping this tick")
            return
        self._in_flight = asyncio.create_task(self.run_batch())

    async def run(self) -> None:
        logger.info("Assignment loop started, listening on %s every %.1fs", CONVERSATION_QUEUE_KEY, self.tick_seconds)
        while not self.finished():
            self.tick()
            await asyncio.sleep(self.tick_seconds)
        if self._in_flight is not None:
            await self._in_flight
        logger.info("Completed %d batches, exiting", self.batches_done)


# ── Main Worker Loop ──────────────────────────────────────────────────────────

async def run_worker() -> None:
    redis = aioredis.from_url(REDIS_URL, decode_responses=True)
    try:
        async with httpx.AsyncClient(base_url=API_URL, timeout=API_TIMEOUT_SECONDS) as client:
            await AssignmentLoop(redis, client).run()
    finally:
        await redis.aclose()


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    asyncio.run(run_worker())
