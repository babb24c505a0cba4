# database/connection.py
"""
MySQL access for the killfeed service.

A single lazily created pool backs every transaction. ``get_cursor()`` is the
unit of work: the block commits on normal exit and rolls back on any error,
so a poll cycle's cursor, stats and kill records land together or not at all.
``use_cursor()`` lets query classes join a transaction that is already open.
"""

import mysql.connector
from mysql.connector import pooling
from contextlib import contextmanager
from killfeed.config.settings import DATABASE_CONFIG, DB_POOL_SIZE
import logging

logger = logging.getLogger(__name__)

POOL_NAME = "killfeed_pool"

_pool = None


def get_pool():
    global _pool
    if _pool is not None:
        return _pool
    try:
        _pool = pooling.MySQLConnectionPool(
            pool_name=POOL_NAME,
            pool_size=DB_POOL_SIZE,
            pool_reset_session=True,
            autocommit=False,
            **DATABASE_CONFIG
        )
    except mysql.connector.Error as err:
        logger.error(f"Could not create pool for {DATABASE_CONFIG['host']}:{DATABASE_CONFIG['port']}: {err}")
        raise
    logger.info(f"MySQL pool '{POOL_NAME}' ready with {DB_POOL_SIZE} connection(s)")
    return _pool


@contextmanager
def get_cursor(dictionary=True):
    """
    Open one transaction and yield its cursor.

    Args:
        dictionary: Rows come back as dicts when True, tuples otherwise

    Usage:
        with get_cursor() as cursor:
            cursor.execute("SELECT kills FROM player_stats WHERE guild_id = %s AND server_id = %s",
                           (tenant.guild_id, tenant.server_id))
    """
    conn = get_pool().get_connection()
    cursor = conn.cursor(dictionary=dictionary)
    try:
        yield cursor
        conn.commit()
    except Exception as err:
        logger.warning(f"Rolling back transaction: {err}")
        conn.rollback()
        raise
    finally:
        cursor.close()
        # Returns the connection to the pool
        conn.close()


@contextmanager
def use_cursor(cursor=None):
    """Join the caller's transaction when a cursor is given, else open one."""
    if cursor is not None:
        yield cursor
        return
    with get_cursor() as own:
        yield own


def check_connection() -> bool:
    """Round-trip a trivial query; False when the server is unreachable."""
    try:
        with get_cursor() as cursor:
            cursor.execute("SELECT 1 AS ok")
            row = cursor.fetchone()
    except mysql.connector.Error as err:
        logger.error(f"MySQL check failed: {err}")
        return False
    return bool(row) and row['ok'] == 1


def close_pool():
    """Forget the pool on shutdown; pooled connections close as they are returned."""
    global _pool
    if _pool is not None:
        _pool = None
        logger.info("MySQL pool released")
