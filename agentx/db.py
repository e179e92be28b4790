# agentx/db.py
"""
AgentX Engine - Database Layer

Provides async PostgreSQL connection pooling via psycopg3 + psycopg_pool.
Implements robust initialization with:
- Exponential backoff retry (5 attempts, max 30s total)
- Structured logging (DSN host/port/dbname/user, no password)
- Pool health state tracking for readiness probes
- Idempotent schema bootstrap (CREATE TABLE IF NOT EXISTS)
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

from loguru import logger
from psycopg_pool import AsyncConnectionPool

from . import __version__
from .config import get_settings
from .core.errors import PersistenceError

# ---------------------------------------------------------------------------
# Pool Health State
# ---------------------------------------------------------------------------


@dataclass
class PoolHealthState:
    """Tracks database pool initialization state for readiness probes."""

    initialized: bool = False
    healthy: bool = False
    last_error: str | None = None
    last_check_at: float | None = None
    init_attempts: int = 0
    init_duration_ms: float | None = None


_pool_health = PoolHealthState()

_db_pool: Optional[AsyncConnectionPool] = None


def get_pool_health() -> PoolHealthState:
    """Return the current pool health state for readiness probes."""
    return _pool_health


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'agent' CHECK (role IN ('agent', 'admin')),
        mobile_number TEXT NOT NULL,
        country_code TEXT NOT NULL,
        active BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS users_active_agents_idx
        ON users (created_at, id) WHERE role = 'agent' AND active
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id UUID PRIMARY KEY,
        first_name TEXT NOT NULL,
        phone TEXT NOT NULL,
        notes TEXT NOT NULL,
        completed BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        seq BIGSERIAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assignment_batches (
        id UUID PRIMARY KEY,
        agent_id UUID NOT NULL REFERENCES users (id),
        upload_date TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS assignment_batches_agent_idx
        ON assignment_batches (agent_id, upload_date DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS assignment_batch_tasks (
        batch_id UUID NOT NULL REFERENCES assignment_batches (id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        task_id UUID NOT NULL UNIQUE REFERENCES tasks (id),
        PRIMARY KEY (batch_id, position)
    )
    """,
)


async def ensure_schema(pool: AsyncConnectionPool | None = None) -> None:
    """Apply the schema DDL. Safe to run repeatedly."""
    pool = pool or await get_pool()
    if pool is None:
        raise PersistenceError("Database connection pool is not initialized")

    async with pool.connection() as conn:
        async with conn.transaction():
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)

    logger.info(f"Schema ensured ({len(SCHEMA_STATEMENTS)} statements)")


# ---------------------------------------------------------------------------
# Low-level DB connection management (psycopg async)
# ---------------------------------------------------------------------------

MAX_RETRY_ATTEMPTS = 5
MAX_TOTAL_WAIT_SECONDS = 30.0
BASE_DELAY_SECONDS = 1.0
READINESS_CHECK_TIMEOUT = 2.0


def _parse_dsn_for_logging(dsn: str) -> dict[str, str | None]:
    """
    Parse DSN and extract loggable components (no password).

    Returns dict with host, port, dbname, user.
    """
    try:
        parsed = urlparse(dsn)
        return {
            "host": parsed.hostname,
            "port": str(parsed.port) if parsed.port else "5432",
            "dbname": parsed.path.lstrip("/") if parsed.path else None,
            "user": parsed.username,
        }
    except ValueError as e:
        return {"error": str(e)}


async def init_db_pool(app: Any | None = None) -> None:
    """
    Initialize async PostgreSQL connection pool with retry logic.

    Called from FastAPI startup and from the CLI. Leaves the pool unset
    (and the readiness probe failing) when every attempt fails.

    Args:
        app: FastAPI app instance (accepted for lifespan symmetry, unused)
    """
    global _db_pool, _pool_health

    if _db_pool is not None:
        return

    settings = get_settings()
    dsn = settings.DATABASE_URL

    dsn_info = _parse_dsn_for_logging(dsn)
    logger.info(
        "Database connection parameters",
        host=dsn_info.get("host"),
        port=dsn_info.get("port"),
        dbname=dsn_info.get("dbname"),
        user=dsn_info.get("user"),
    )

    app_name = f"agentx_v{__version__.replace('.', '_')}"
    start_time = time.monotonic()
    last_error: Exception | None = None

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        _pool_health.init_attempts = attempt
        elapsed = time.monotonic() - start_time

        if elapsed >= MAX_TOTAL_WAIT_SECONDS:
            logger.error(
                f"DB pool init: time budget exhausted ({elapsed:.1f}s >= {MAX_TOTAL_WAIT_SECONDS}s)"
            )
            break

        pool: AsyncConnectionPool | None = None
        try:
            logger.info(f"DB pool init: attempt {attempt}/{MAX_RETRY_ATTEMPTS}")

            pool = AsyncConnectionPool(
                dsn,
                min_size=settings.DB_POOL_MIN_SIZE,
                max_size=settings.DB_POOL_MAX_SIZE,
                kwargs={"application_name": app_name},
                open=False,
            )
            await pool.open(wait=True, timeout=10.0)

            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1;")
                    result = await cur.fetchone()
                    if result is None or result[0] != 1:
                        raise RuntimeError("SELECT 1 did not return expected result")

            init_duration = (time.monotonic() - start_time) * 1000
            _db_pool = pool
            _pool_health.initialized = True
            _pool_health.healthy = True
            _pool_health.last_error = None
            _pool_health.init_duration_ms = init_duration
            _pool_health.last_check_at = time.monotonic()

            logger.info(
                f"Database pool initialized (attempt {attempt}, {init_duration:.0f}ms total)"
            )
            return

        except Exception as e:
            last_error = e
            _pool_health.last_error = f"{type(e).__name__}: {str(e)[:200]}"
            _pool_health.healthy = False
            if pool is not None:
                await pool.close()

            logger.warning(f"DB pool init attempt {attempt} failed: {type(e).__name__}: {e}")

            if attempt < MAX_RETRY_ATTEMPTS:
                delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
                jitter = random.uniform(0, delay * 0.3)
                actual_delay = min(delay + jitter, MAX_TOTAL_WAIT_SECONDS - elapsed)

                if actual_delay > 0:
                    logger.info(f"DB pool init: waiting {actual_delay:.1f}s before retry")
                    await asyncio.sleep(actual_delay)

    total_elapsed = time.monotonic() - start_time
    _pool_health.initialized = False
    _pool_health.healthy = False
    _pool_health.init_duration_ms = total_elapsed * 1000

    logger.error(
        f"Failed to initialize database pool after {_pool_health.init_attempts} attempts "
        f"({total_elapsed:.1f}s): {last_error} - readiness probe will fail"
    )


async def check_db_ready(timeout: float = READINESS_CHECK_TIMEOUT) -> tuple[bool, str]:
    """
    Perform a readiness check on the database connection.

    Executes SELECT 1 with a timeout to verify the pool is healthy.

    Returns:
        Tuple of (is_ready, status_message)
    """
    pool = _db_pool
    if pool is None:
        return False, _pool_health.last_error or "Pool not initialized"

    try:
        start = time.monotonic()

        async def _ping() -> int:
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1;")
                    row = await cur.fetchone()
                    return row[0] if row else 0

        result = await asyncio.wait_for(_ping(), timeout=timeout)
        latency_ms = (time.monotonic() - start) * 1000

        if result == 1:
            _pool_health.healthy = True
            _pool_health.last_error = None
            _pool_health.last_check_at = time.monotonic()
            return True, f"ok ({latency_ms:.0f}ms)"

        _pool_health.healthy = False
        _pool_health.last_error = f"SELECT 1 returned {result}"
        return False, f"unexpected_result: {result}"

    except asyncio.TimeoutError:
        _pool_health.healthy = False
        _pool_health.last_error = f"Query timeout ({timeout}s)"
        return False, f"timeout ({timeout}s)"
    except Exception as e:
        _pool_health.healthy = False
        _pool_health.last_error = f"{type(e).__name__}: {str(e)[:100]}"
        return False, f"error: {type(e).__name__}"


async def close_db_pool() -> None:
    """
    Called from FastAPI shutdown.

    Closes the connection pool and resets health state.
    """
    global _db_pool
    if _db_pool is not None:
        logger.info("Closing PostgreSQL connection pool")
        await _db_pool.close()
        _db_pool = None
        _pool_health.initialized = False
        _pool_health.healthy = False


async def get_pool() -> Optional[AsyncConnectionPool]:
    """
    Returns the async connection pool, initializing it on first use.

    Callers can use:
        pool = await get_pool()
        async with pool.connection() as conn:
            ...
    """
    if _db_pool is None:
        await init_db_pool()

    return _db_pool
