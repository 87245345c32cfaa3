import os
from pathlib import Path
from contextlib import asynccontextmanager
from urllib.parse import urlparse
import asyncpg
import aiosql
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SCHEMA = "sms_relay"


def _parse_database_url():
    """Split DATABASE_URL into asyncpg connect kwargs."""
    url = os.getenv("DATABASE_URL")
    if not url:
        return None

    parsed = urlparse(url)
    return {
        "host": parsed.hostname,
        "port": parsed.port or 5432,
        "database": parsed.path.lstrip("/"),
        "user": parsed.username,
        "password": parsed.password,
    }


def _env_config():
    return {
        "host": os.getenv("SMS_DB_HOST"),
        "port": int(os.getenv("SMS_DB_PORT", "5432")),
        "database": os.getenv("SMS_DB_NAME"),
        "user": os.getenv("SMS_DB_USER"),
        "password": os.getenv("SMS_DB_PASSWORD"),
    }


# Named queries from db/queries/*.sql
queries = aiosql.from_path(
    Path(__file__).parent / "queries",
    "asyncpg",
)

# Global connection pool
_pool = None


async def _init_connection(conn):
    await conn.execute(f"SET search_path TO {SCHEMA}, public")


async def init_db():
    """Create the pool on first use."""
    global _pool
    if _pool is None:
        # DATABASE_URL wins over the individual SMS_DB_* vars
        db_config = _parse_database_url() or _env_config()
        _pool = await asyncpg.create_pool(
            **db_config,
            min_size=1,
            max_size=10,
            command_timeout=60,
            max_inactive_connection_lifetime=300,
            statement_cache_size=0,  # pgbouncer/Supavisor transaction mode
            init=_init_connection,
        )
    return _pool


@asynccontextmanager
async def get_conn():
    """Acquire a pooled connection."""
    pool = await init_db()
    async with pool.acquire() as conn:
        yield conn


@asynccontextmanager
async def get_transaction():
    """Acquire a pooled connection inside a transaction."""
    pool = await init_db()
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn


async def close_db():
    """Close the pool."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
