# config.py
# All configuration and environment variables live here.
# No hardcoded values anywhere in api_server.py, worker.py or simulate.py.

import os

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s %(message)s"

# ── Roster ────────────────────────────────────────────────────────────────────
ROSTER_PATH: str | None = os.getenv("ROSTER_PATH")          # JSON list of agents
LOADTEST_TOTAL_AGENTS: int = int(os.getenv("LOADTEST_TOTAL_AGENTS", "10000"))
LOADTEST_SEED: int | None = (
    int(os.environ["LOADTEST_SEED"]) if os.getenv("LOADTEST_SEED") else None
)

# ── Load generator ────────────────────────────────────────────────────────────
MIN_AGENT_LIMIT: int = 5
MAX_AGENT_LIMIT: int = 20
LARGE_ACCOUNT_RATIO: float = 0.2                    # share of agents in large accounts
LARGE_ACCOUNT_AGENTS: tuple[int, int] = (1000, 5000)
SMALL_ACCOUNT_AGENTS: tuple[int, int] = (10, 100)
LOADTEST_CONVERSATIONS: int = int(os.getenv("LOADTEST_CONVERSATIONS", "10000"))

# ── Redis (conversation ingestion) ────────────────────────────────────────────
REDIS_URL: str = os.getenv("REDIS_URL", "redis://redis:6379")
CONVERSATION_QUEUE_KEY: str = "conversations_queue"
INGEST_CHUNK_SIZE: int = 1000                       # items per RPUSH from simulate.py

# ── API ───────────────────────────────────────────────────────────────────────
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
API_URL: str = os.getenv("API_URL", f"http://localhost:{API_PORT}")
API_TIMEOUT_SECONDS: float = 10.0

# ── Assignment loop ───────────────────────────────────────────────────────────
TICK_SECONDS: float = float(os.getenv("TICK_SECONDS", "1.0"))
BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "100"))
MAX_BATCHES: int = int(os.getenv("MAX_BATCHES", "0"))      # 0 = run forever
REDIS_RETRY_SECONDS: float = 3.0
