# api_server.py
# FastAPI server over one in-process AssignmentSystem:
#   POST /assignments, POST /conversations, GET/PUT /agents/{id}, GET /health

import json
import logging
import random
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from config import (
    CONVERSATION_QUEUE_KEY,
    LOADTEST_SEED,
    LOADTEST_TOTAL_AGENTS,
    LOG_FORMAT,
    LOG_LEVEL,
    REDIS_URL,
    ROSTER_PATH,
)
from errors import UnknownAgentError
from router import AssignmentSystem
from shared_types import AgentSnapshot, AgentSpec, Conversation
from simulate import generate_roster

logger = logging.getLogger(__name__)


# ── Roster ────────────────────────────────────────────────────────────────────

def load_roster(path: str | None = ROSTER_PATH) -> list[AgentSpec]:
    """Read a JSON roster from ``path``, or generate a synthetic one when unset."""
    if not path:
        logger.info("ROSTER_PATH not set, generating %d synthetic agents", LOADTEST_TOTAL_AGENTS)
        return generate_roster(LOADTEST_TOTAL_AGENTS, rng=random.Random(LOADTEST_SEED))
    with open(path, encoding="utf-8") as fh:
        entries = json.load(fh)
    return [AgentSpec(e["agent_id"], e["account_id"], int(e["limit"])) for e in entries]


# ── App Lifespan ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "system", None) is None:
        app.state.system = AssignmentSystem.initialize(load_roster())

    app.state.redis = None
    client = aioredis.from_url(REDIS_URL, decode_responses=True)
    try:
        await client.ping()
        app.state.redis = client
        logger.info("Redis connected, ingestion list %s", CONVERSATION_QUEUE_KEY)
    except (aioredis.RedisError, OSError) as e:
        logger.warning("Redis unavailable (%s). POST /conversations disabled.", e)
        await client.aclose()
    yield
    if app.state.redis is not None:
        await app.state.redis.aclose()


app = FastAPI(
    title="Conversation Assignment Engine",
    version="1.0.0",
    lifespan=lifespan,
)


def _system(request: Request) -> AssignmentSystem:
    return request.app.state.system


def _redis(request: Request):
    return getattr(request.app.state, "redis", None)


# ── Request / Response Models ─────────────────────────────────────────────────

class ConversationIn(BaseModel):
    conversation_id: str
    account_id: str


class AssignmentRequest(BaseModel):
    conversations: list[ConversationIn]


class FailureOut(BaseModel):
    conversation_id: str
    account_id: str
    reason: str


class AssignmentResponse(BaseModel):
    assigned: list[str]
    failed_count: int
    failures: list[FailureOut]


class LimitRequest(BaseModel):
    limit: int = Field(ge=0)


class AgentResponse(BaseModel):
    agent_id: str
    account_id: str
    limit: int
    load: int
    queue: list[str]
    last_assignment_time: float | None

    @classmethod
    def of(cls, snap: AgentSnapshot) -> "AgentResponse":
        return cls(
            agent_id=snap.agent_id,
            account_id=snap.account_id,
            limit=snap.limit,
            load=snap.load,
            queue=list(snap.queue),
            last_assignment_time=snap.last_assignment_time,
        )


class EnqueueResponse(BaseModel):
    status: str
    queued: int
    depth: int


class HealthResponse(BaseModel):
    status: str
    agents: int
    accounts: int
    ingestion_depth: int | None


# ── POST /assignments ─────────────────────────────────────────────────────────

@app.post("/assignments", response_model=AssignmentResponse)
def assign(req: AssignmentRequest, request: Request) -> AssignmentResponse:
    """Assign a batch synchronously. Partial failures still return 200."""
    result = _system(request).assign_batch(
        Conversation(c.conversation_id, c.account_id) for c in req.conversations
    )
    return AssignmentResponse(
        assigned=result.assigned,
        failed_count=result.failed_count,
        failures=[
            FailureOut(
                conversation_id=f.conversation.conversation_id,
                account_id=f.conversation.account_id,
                reason=str(f.error),
            )
            for f in result.failures
        ],
    )


# ── POST /conversations ───────────────────────────────────────────────────────

@app.post("/conversations", status_code=202, response_model=EnqueueResponse)
async def enqueue(req: AssignmentRequest, request: Request) -> EnqueueResponse:
    """Push conversations onto the ingestion list; worker.py assigns them on its next tick."""
    redis = _redis(request)
    if redis is None:
        raise HTTPException(status_code=503, detail="Conversation ingestion unavailable")
    if not req.conversations:
        depth = await redis.llen(CONVERSATION_QUEUE_KEY)
        return EnqueueResponse(status="accepted", queued=0, depth=depth)

    depth = await redis.rpush(
        CONVERSATION_QUEUE_KEY,
        *(c.model_dump_json() for c in req.conversations),
    )
    return EnqueueResponse(status="accepted", queued=len(req.conversations), depth=depth)


# ── Agents ────────────────────────────────────────────────────────────────────

@app.get("/agents/{agent_id}", response_model=AgentResponse)
def get_agent(agent_id: str, request: Request) -> AgentResponse:
    try:
        return AgentResponse.of(_system(request).snapshot(agent_id))
    except UnknownAgentError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@app.put("/agents/{agent_id}/limit", response_model=AgentResponse)
def set_limit(agent_id: str, req: LimitRequest, request: Request) -> AgentResponse:
    system = _system(request)
    try:
        system.set_limit(agent_id, req.limit)
        return AgentResponse.of(system.snapshot(agent_id))
    except UnknownAgentError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


# ── GET /health ───────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    registry = _system(request).registry
    depth = None
    redis = _redis(request)
    if redis is not None:
        try:
            depth = await redis.llen(CONVERSATION_QUEUE_KEY)
        except aioredis.RedisError as e:
            logger.warning("Could not read ingestion depth: %s", e)
            depth = -1

    return HealthResponse(
        status="ok",
        agents=len(registry),
        accounts=len(registry.accounts()),
        ingestion_depth=depth,
    )


# ── Entry Point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    from config import API_HOST, API_PORT
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    uvicorn.run("api_server:app", host=API_HOST, port=API_PORT)
