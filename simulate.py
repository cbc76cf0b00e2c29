"""
Load generator: synthetic agent rosters and conversation streams.

Run:
    python simulate.py roster -o roster.json      # write a roster for ROSTER_PATH
    python simulate.py fire                       # POST batches to the API
    python simulate.py enqueue                    # push to Redis for worker.py
"""

import asyncio
import json
import logging
import random
from typing import List, Optional, Sequence

import click
import httpx
import redis.asyncio as aioredis

from config import (
    API_TIMEOUT_SECONDS,
    API_URL,
    BATCH_SIZE,
    CONVERSATION_QUEUE_KEY,
    INGEST_CHUNK_SIZE,
    LARGE_ACCOUNT_AGENTS,
    LARGE_ACCOUNT_RATIO,
    LOADTEST_CONVERSATIONS,
    LOADTEST_SEED,
    LOADTEST_TOTAL_AGENTS,
    LOG_FORMAT,
    LOG_LEVEL,
    MAX_AGENT_LIMIT,
    MIN_AGENT_LIMIT,
    REDIS_URL,
    SMALL_ACCOUNT_AGENTS,
)
from shared_types import AgentSpec, Conversation

logger = logging.getLogger(__name__)


# ── Roster generation ─────────────────────────────────────────────────────────

def _fill_accounts(
    agents: List[AgentSpec],
    prefix: str,
    target: int,
    size_range: Sequence[int],
    next_account: int,
    limit_range: Sequence[int],
    rng: random.Random,
) -> int:
    created = 0
    while created < target:
        in_account = rng.randint(*size_range)
        if created + in_account > target:
            in_account = target - created

        account = f"{prefix}_{next_account}"
        for i in range(in_account):
            agents.append(AgentSpec(
                agent_id=f"agent_{account}_{i + 1}",
                account_id=account,
                limit=rng.randint(*limit_range),
            ))
        created += in_account
        next_account += 1
    return next_account


def generate_roster(
    total_agents: int,
    *,
    min_limit: int = MIN_AGENT_LIMIT,
    max_limit: int = MAX_AGENT_LIMIT,
    large_account_ratio: float = LARGE_ACCOUNT_RATIO,
    large_account_agents: Sequence[int] = LARGE_ACCOUNT_AGENTS,
    small_account_agents: Sequence[int] = SMALL_ACCOUNT_AGENTS,
    rng: Optional[random.Random] = None,
) -> List[AgentSpec]:
    """
    Build ``total_agents`` agents spread unevenly over accounts: about
    ``large_account_ratio`` of them sit in a few large accounts, the rest in
    many small ones. Limits are uniform in [min_limit, max_limit]. The result
    is shuffled so accounts are interleaved.
    """
    rng = rng or random.Random()
    agents: List[AgentSpec] = []
    limits = (min_limit, max_limit)

    target_large = int(total_agents * large_account_ratio)
    next_account = _fill_accounts(
        agents, "large_account", target_large, large_account_agents, 1, limits, rng,
    )
    _fill_accounts(
        agents, "small_account", total_agents - target_large, small_account_agents,
        next_account, limits, rng,
    )

    rng.shuffle(agents)
    return agents


def unique_accounts(roster: Sequence) -> List[str]:
    """Accounts in the order they first appear in the roster."""
    return list(dict.fromkeys(AgentSpec(*entry).account_id for entry in roster))


def generate_conversations(
    accounts: Sequence[str],
    count: int,
    rng: Optional[random.Random] = None,
) -> List[Conversation]:
    if not accounts:
        return []
    rng = rng or random.Random()
    return [
        Conversation(f"conversation-{i + 1}", rng.choice(accounts))
        for i in range(count)
    ]


def batches(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ── Delivery ──────────────────────────────────────────────────────────────────

def _payload(conversation: Conversation) -> dict:
    return {"conversation_id": conversation.conversation_id, "account_id": conversation.account_id}


async def fire_batches(conversations: Sequence[Conversation], batch_size: int, url: str) -> tuple:
    assigned = failed = 0
    async with httpx.AsyncClient(base_url=url, timeout=API_TIMEOUT_SECONDS) as client:
        for n, chunk in enumerate(batches(conversations, batch_size), start=1):
            resp = await client.post(
                "/assignments",
                json={"conversations": [_payload(c) for c in chunk]},
            )
            resp.raise_for_status()
            body = resp.json()
            assigned += len(body["assigned"])
            failed += body["failed_count"]
            logger.info(
                "Batch %d: %d assigned, %d failed",
                n, len(body["assigned"]), body["failed_count"],
            )
    return assigned, failed


async def push_to_redis(
    conversations: Sequence[Conversation],
    redis_url: str,
    chunk_size: int = INGEST_CHUNK_SIZE,
) -> int:
    redis = aioredis.from_url(redis_url, decode_responses=True)
    try:
        for chunk in batches(conversations, chunk_size):
            await redis.rpush(CONVERSATION_QUEUE_KEY, *(json.dumps(_payload(c)) for c in chunk))
        return await redis.llen(CONVERSATION_QUEUE_KEY)
    finally:
        await redis.aclose()


# ── CLI ───────────────────────────────────────────────────────────────────────

def _conversations_for(agents: int, count: int, seed: Optional[int]) -> List[Conversation]:
    if seed is None:
        logger.warning(
            "No --seed or LOADTEST_SEED given; accounts may not match the API's roster "
            "and will fail as unknown accounts"
        )
    rng = random.Random(seed)
    roster = generate_roster(agents, rng=rng)
    return generate_conversations(unique_accounts(roster), count, rng=rng)


@click.group(help="Load generator for the conversation assignment engine.")
def cli() -> None:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)


@cli.command(help="Write a synthetic roster as JSON.")
@click.option("--agents", "-n", default=LOADTEST_TOTAL_AGENTS, show_default=True)
@click.option("--seed", type=int, default=LOADTEST_SEED)
@click.option("--output", "-o", type=click.File("w"), default="-")
def roster(agents: int, seed: Optional[int], output) -> None:
    specs = generate_roster(agents, rng=random.Random(seed))
    json.dump([spec._asdict() for spec in specs], output)
    logger.info("Wrote %d agents across %d accounts", len(specs), len(unique_accounts(specs)))


@cli.command(help="POST conversations to the API in batches.")
@click.option("--agents", "-n", default=LOADTEST_TOTAL_AGENTS, show_default=True,
              help="Roster size the accounts are drawn from; must match the API's roster.")
@click.option("--count", "-c", default=LOADTEST_CONVERSATIONS, show_default=True)
@click.option("--batch-size", "-b", default=BATCH_SIZE, show_default=True)
@click.option("--seed", type=int, default=LOADTEST_SEED)
@click.option("--url", default=API_URL, show_default=True)
def fire(agents: int, count: int, batch_size: int, seed: Optional[int], url: str) -> None:
    conversations = _conversations_for(agents, count, seed)
    assigned, failed = asyncio.run(fire_batches(conversations, batch_size, url))
    click.echo(f"{assigned} assigned, {failed} failed")


@cli.command(help="Push conversations onto the Redis ingestion list for worker.py.")
@click.option("--agents", "-n", default=LOADTEST_TOTAL_AGENTS, show_default=True)
@click.option("--count", "-c", default=LOADTEST_CONVERSATIONS, show_default=True)
@click.option("--seed", type=int, default=LOADTEST_SEED)
@click.option("--redis-url", default=REDIS_URL, show_default=True)
def enqueue(agents: int, count: int, seed: Optional[int], redis_url: str) -> None:
    conversations = _conversations_for(agents, count, seed)
    depth = asyncio.run(push_to_redis(conversations, redis_url))
    click.echo(f"{len(conversations)} conversations queued, depth now {depth}")


if __name__ == "__main__":
    cli()
