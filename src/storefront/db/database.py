# manages connections to the storefront db, provides helpers internal to the db package
import asyncio
import os.path
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from sqlite3 import Row

import aiosqlite

from storefront.utils import config
from storefront.utils.logger import get_logger

_logger = get_logger(__name__)

_HERE = os.path.dirname(os.path.abspath(__file__))

DB_PATH = config.DB_PATH
DB_INIT_SCRIPTS = [
    os.path.join(_HERE, "schema.sql"),
    os.path.join(_HERE, "seed.sql"),
]

_initialized = False
_init_lock = asyncio.Lock()


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _init_db(conn: aiosqlite.Connection) -> None:
    for script in DB_INIT_SCRIPTS:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {os.path.basename(script)}...")
        with open(script, "r") as f:
            await conn.executescript(f.read())
    await conn.commit()


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    Ensures the database is initialized (tables and seed data) on first use.
    """
    global _initialized
    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = await aiosqlite.connect(DB_PATH)
    conn.row_factory = Row
    await conn.execute("PRAGMA foreign_keys = ON;")

    if not _initialized:
        async with _init_lock:
            if not _initialized:
                exists = await _table_exists(conn, "products")
                if not exists:
                    _logger.info(f"Initializing database at {DB_PATH}...")
                    await _init_db(conn)
                _initialized = True
    try:
        yield conn
    finally:
        await conn.close()


@asynccontextmanager
async def transaction() -> aiosqlite.Connection:
    """Connection holding the SQLite write lock for the whole block.

    Commits when the block exits normally, rolls back on any exception.
    """
    async with connect() as conn:
        await conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        else:
            await conn.commit()


async def fetch_one(conn: aiosqlite.Connection, sql: str, params=()) -> Row | None:
    cur = await conn.execute(sql, params)
    row = await cur.fetchone()
    await cur.close()
    return row


async def fetch_all(conn: aiosqlite.Connection, sql: str, params=()) -> list[Row]:
    cur = await conn.execute(sql, params)
    rows = await cur.fetchall()
    await cur.close()
    return list(rows)


async def ping() -> bool:
    """True if the database answers a trivial query."""
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT 1;")
    return row is not None
