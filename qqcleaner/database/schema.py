"""
Expected shape of the chat client's tables.

The client's schema is an external contract. If a required column is absent
the join below would silently mis-match, so validation fails fast.
"""
import sqlite3
import logging
from typing import Set, Tuple

from .. import config
from ..exceptions import SchemaMismatchError

FILES_REQUIRED = (
    config.COL_ELEMENT_ID,
    config.COL_PEER_UID,
    config.COL_MSG_TIME,
    config.COL_FILE_NAME,
    config.COL_CHAT_TYPE,
)
FILES_OPTIONAL = (
    config.COL_MSG_ID,
    config.COL_FILE_PATH,
    config.COL_FILE_SIZE,
)

GROUPS_REQUIRED = (
    config.COL_GROUP_ID,
    config.COL_GROUP_NAME,
)
GROUPS_OPTIONAL = (
    config.COL_GROUP_REMARK,
    config.COL_OWNER_UID,
    config.COL_MEMBER_COUNT,
    config.COL_QUIT_FLAG,
)


def table_columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    """Returns the column names of `table`, empty if the table does not exist."""
    cur = conn.execute(f'PRAGMA table_info("{table}")')
    return {str(row[1]) for row in cur.fetchall()}


def validate_table(conn: sqlite3.Connection,
                   table: str,
                   required: Tuple[str, ...],
                   optional: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    """
    Checks that `table` carries every required column.
    Returns the columns to select: all required ones plus the optional ones present.
    """
    present = table_columns(conn, table)
    if not present:
        raise SchemaMismatchError(f"Table '{table}' not found")

    missing = [c for c in required if c not in present]
    if missing:
        raise SchemaMismatchError(f"Table '{table}' is missing columns: {', '.join(missing)}")

    absent_optional = [c for c in optional if c not in present]
    if absent_optional:
        logging.debug(f"Table '{table}' lacks optional columns: {', '.join(absent_optional)}")

    return tuple(required) + tuple(c for c in optional if c in present)


def quote(column: str) -> str:
    return f'"{column}"'
