# tests/test_api.py
# Tests drive the app in-process; Redis is replaced with AsyncMock.
# Run: pytest tests/test_api.py -v

import json
import unittest.mock as mock

import pytest
import redis.asyncio as aioredis
from httpx import ASGITransport, AsyncClient

import api_server
from api_server import app, lifespan, load_roster
from router import AssignmentSystem
from shared_types import AgentSpec


@pytest.fixture(autouse=True)
def system():
    """Fresh roster per test; lifespan is not run by ASGITransport."""
    app.state.system = AssignmentSystem.initialize([
        ("a1", "X", 1),
        ("a2", "X", 1),
        ("b1", "Y", 2),
    ])
    app.state.redis = None
    yield app.state.system
    app.state.system = None
    app.state.redis = None


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _batch(*pairs):
    return {"conversations": [{"conversation_id": c, "account_id": a} for c, a in pairs]}


# ─────────────────────────────────────────────────────────────────────────────
# POST /assignments
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assign_batch_reports_successes_and_failures():
    async with _client() as ac:
        resp = await ac.post("/assignments", json=_batch(("c1", "X"), ("c2", "X"), ("c3", "X")))
    assert resp.status_code == 200
    data = resp.json()
    assert sorted(data["assigned"]) == ["a1", "a2"]
    assert data["failed_count"] == 1
    assert data["failures"][0]["conversation_id"] == "c3"
    assert data["failures"][0]["account_id"] == "X"
    assert "no available agents" in data["failures"][0]["reason"]


@pytest.mark.asyncio
async def test_assign_unknown_account_is_a_failure_not_an_error():
    async with _client() as ac:
        resp = await ac.post("/assignments", json=_batch(("c1", "nope"), ("c2", "Y")))
    assert resp.status_code == 200
    data = resp.json()
    assert data["assigned"] == ["b1"]
    assert data["failed_count"] == 1


@pytest.mark.asyncio
async def test_assign_state_persists_between_requests(system):
    async with _client() as ac:
        await ac.post("/assignments", json=_batch(("c1", "Y")))
        await ac.post("/assignments", json=_batch(("c2", "Y")))
        resp = await ac.post("/assignments", json=_batch(("c3", "Y")))
    assert resp.json()["failed_count"] == 1
    assert system.snapshot("b1").queue == ("c1", "c2")


@pytest.mark.asyncio
async def test_assign_rejects_malformed_body():
    async with _client() as ac:
        resp = await ac.post("/assignments", json={"conversations": [{"conversation_id": "c1"}]})
    assert resp.status_code == 422


# ─────────────────────────────────────────────────────────────────────────────
# Agents
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_agent_snapshot():
    async with _client() as ac:
        await ac.post("/assignments", json=_batch(("c1", "Y")))
        resp = await ac.get("/agents/b1")
    assert resp.status_code == 200
    data = resp.json()
    assert data["agent_id"] == "b1"
    assert data["account_id"] == "Y"
    assert data["load"] == 1
    assert data["queue"] == ["c1"]
    assert isinstance(data["last_assignment_time"], float)


@pytest.mark.asyncio
async def test_get_agent_never_assigned_has_null_timestamp():
    async with _client() as ac:
        resp = await ac.get("/agents/a1")
    assert resp.json()["last_assignment_time"] is None


@pytest.mark.asyncio
async def test_get_unknown_agent_returns_404():
    async with _client() as ac:
        resp = await ac.get("/agents/ghost")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_set_limit_takes_effect_immediately():
    async with _client() as ac:
        resp = await ac.put("/agents/a1/limit", json={"limit": 3})
        assert resp.status_code == 200
        assert resp.json()["limit"] == 3
        resp = await ac.post(
            "/assignments",
            json=_batch(("c1", "X"), ("c2", "X"), ("c3", "X"), ("c4", "X"), ("c5", "X")),
        )
    data = resp.json()
    assert data["failed_count"] == 1
    assert data["assigned"].count("a1") == 3
    assert data["assigned"].count("a2") == 1


@pytest.mark.asyncio
async def test_set_limit_unknown_agent_returns_404():
    async with _client() as ac:
        resp = await ac.put("/agents/ghost/limit", json={"limit": 3})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_set_limit_negative_returns_422(system):
    async with _client() as ac:
        resp = await ac.put("/agents/a1/limit", json={"limit": -1})
    assert resp.status_code == 422
    assert system.snapshot("a1").limit == 1


# ─────────────────────────────────────────────────────────────────────────────
# POST /conversations (Redis ingestion)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_enqueue_returns_503_without_redis():
    async with _client() as ac:
        resp = await ac.post("/conversations", json=_batch(("c1", "X")))
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_enqueue_pushes_to_redis():
    mock_redis = mock.AsyncMock()
    mock_redis.rpush = mock.AsyncMock(return_value=2)
    app.state.redis = mock_redis

    async with _client() as ac:
        resp = await ac.post("/conversations", json=_batch(("c1", "X"), ("c2", "Y")))

    assert resp.status_code == 202
    assert resp.json() == {"status": "accepted", "queued": 2, "depth": 2}
    key, *payloads = mock_redis.rpush.call_args.args
    assert key == api_server.CONVERSATION_QUEUE_KEY
    assert [json.loads(p) for p in payloads] == [
        {"conversation_id": "c1", "account_id": "X"},
        {"conversation_id": "c2", "account_id": "Y"},
    ]


@pytest.mark.asyncio
async def test_enqueue_empty_batch_does_not_push():
    mock_redis = mock.AsyncMock()
    mock_redis.llen = mock.AsyncMock(return_value=5)
    app.state.redis = mock_redis

    async with _client() as ac:
        resp = await ac.post("/conversations", json={"conversations": []})

    assert resp.status_code == 202
    assert resp.json()["queued"] == 0
    mock_redis.rpush.assert_not_called()


# ─────────────────────────────────────────────────────────────────────────────
# GET /health
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health_without_redis():
    async with _client() as ac:
        resp = await ac.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "agents": 3, "accounts": 2, "ingestion_depth": None}


@pytest.mark.asyncio
async def test_health_reports_ingestion_depth():
    mock_redis = mock.AsyncMock()
    mock_redis.llen = mock.AsyncMock(return_value=42)
    app.state.redis = mock_redis

    async with _client() as ac:
        resp = await ac.get("/health")
    assert resp.json()["ingestion_depth"] == 42


@pytest.mark.asyncio
async def test_health_redis_error_reports_minus_one():
    mock_redis = mock.AsyncMock()
    mock_redis.llen = mock.AsyncMock(side_effect=aioredis.ConnectionError("gone"))
    app.state.redis = mock_redis

    async with _client() as ac:
        resp = await ac.get("/health")
    assert resp.json()["ingestion_depth"] == -1


# ─────────────────────────────────────────────────────────────────────────────
# Roster loading + lifespan
# ─────────────────────────────────────────────────────────────────────────────

def test_load_roster_from_file(tmp_path):
    path = tmp_path / "roster.json"
    path.write_text(json.dumps([
        {"agent_id": "a1", "account_id": "X", "limit": 2},
        {"agent_id": "a2", "account_id": "X", "limit": "3"},
    ]))
    assert load_roster(str(path)) == [AgentSpec("a1", "X", 2), AgentSpec("a2", "X", 3)]


def test_load_roster_generates_when_unset(monkeypatch):
    monkeypatch.setattr(api_server, "LOADTEST_TOTAL_AGENTS", 50)
    roster = load_roster(None)
    assert len(roster) == 50


@pytest.mark.asyncio
async def test_lifespan_builds_system_and_survives_missing_redis(monkeypatch, tmp_path):
    path = tmp_path / "roster.json"
    path.write_text(json.dumps([{"agent_id": "a1", "account_id": "X", "limit": 2}]))
    monkeypatch.setattr(api_server, "load_roster", lambda: load_roster(str(path)))

    broken = mock.AsyncMock()
    broken.ping = mock.AsyncMock(side_effect=aioredis.ConnectionError("refused"))
    monkeypatch.setattr(api_server.aioredis, "from_url", lambda *a, **kw: broken)

    app.state.system = None
    async with lifespan(app):
        assert app.state.redis is None
        assert app.state.system.snapshot("a1").limit == 2
        broken.aclose.assert_awaited_once()
