#!/usr/bin/env python

import argparse
import sqlite3
from datetime import datetime, UTC
from pathlib import Path
from typing import Optional

from qqcleaner import config

F = config.FILES_TABLE
G = config.GROUP_TABLE


def q(column: str) -> str:
    return f'"{column}"'


def connect_db(files_db: Path, group_db: Optional[Path] = None) -> sqlite3.Connection:
    """Opens a decrypted files database, attaching the group database as `grp` if given."""
    if not files_db.exists():
        raise SystemExit(f"DB not found: {files_db}")
    conn = sqlite3.connect(files_db)
    if group_db is not None:
        if not group_db.exists():
            conn.close()
            raise SystemExit(f"DB not found: {group_db}")
        conn.execute("ATTACH DATABASE ? AS grp", (str(group_db),))
    return conn


def _has_groups(conn: sqlite3.Connection) -> bool:
    return any(row[1] == "grp" for row in conn.execute("PRAGMA database_list"))


def _fmt_time(ts) -> str:
    if ts is None:
        return ""
    return datetime.fromtimestamp(int(ts), UTC).strftime("%Y-%m-%d %H:%M")


def list_groups(conn: sqlite3.Connection):
    cur = conn.cursor()
    if _has_groups(conn):
        cur.execute(f"""
            SELECT f.{q(config.COL_PEER_UID)}, g.{q(config.COL_GROUP_NAME)}, COUNT(*), MAX(f.{q(config.COL_MSG_TIME)})
            FROM {F} f
            LEFT JOIN grp.{G} g ON CAST(g.{q(config.COL_GROUP_ID)} AS TEXT) = CAST(f.{q(config.COL_PEER_UID)} AS TEXT)
            GROUP BY f.{q(config.COL_PEER_UID)}
            ORDER BY COUNT(*) DESC, 1
        """)
    else:
        cur.execute(f"""
            SELECT {q(config.COL_PEER_UID)}, NULL, COUNT(*), MAX({q(config.COL_MSG_TIME)})
            FROM {F}
            GROUP BY {q(config.COL_PEER_UID)}
            ORDER BY COUNT(*) DESC, 1
        """)
    rows = cur.fetchall()

    print("group_id     | files  | latest           | name")
    print("-------------+--------+------------------+----------")
    for group_id, name, count, latest in rows:
        print(f"{str(group_id).ljust(12)} | {count:6d} | {_fmt_time(latest).ljust(16)} | {name or ''}")


def show_group_files(conn: sqlite3.Connection, group_id: str):
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {q(config.COL_ELEMENT_ID)}, {q(config.COL_MSG_TIME)}, {q(config.COL_FILE_NAME)}
        FROM {F}
        WHERE CAST({q(config.COL_PEER_UID)} AS TEXT) = ?
        ORDER BY {q(config.COL_MSG_TIME)}, {q(config.COL_ELEMENT_ID)}
    """, (str(group_id),))
    rows = cur.fetchall()
    if not rows:
        print(f"No files for group {group_id}")
        return

    print(f"Files in group {group_id}:")
    print("reference_id        | sent_at          | file_name")
    print("--------------------+------------------+----------")
    for ref_id, ts, name in rows:
        print(f"{str(ref_id).ljust(19)} | {_fmt_time(ts).ljust(16)} | {name or ''}")


def list_orphan_files(conn: sqlite3.Connection):
    """Group chat files whose group has no row in the group database."""
    if not _has_groups(conn):
        raise SystemExit("--groups-db is required to find orphan files")

    cur = conn.cursor()
    cur.execute(f"""
        SELECT f.{q(config.COL_ELEMENT_ID)}, f.{q(config.COL_PEER_UID)}, f.{q(config.COL_FILE_NAME)}
        FROM {F} f
        WHERE f.{q(config.COL_CHAT_TYPE)} = ?
          AND CAST(f.{q(config.COL_PEER_UID)} AS TEXT) NOT IN (
              SELECT CAST({q(config.COL_GROUP_ID)} AS TEXT) FROM grp.{G}
              WHERE {q(config.COL_GROUP_ID)} IS NOT NULL
          )
        ORDER BY f.{q(config.COL_PEER_UID)}, f.{q(config.COL_ELEMENT_ID)}
    """, (config.GROUP_CHAT_TYPE,))
    rows = cur.fetchall()
    if not rows:
        print("No orphan files found.")
        return

    print("Files whose group is unknown:")
    print("reference_id        | group_id     | file_name")
    print("--------------------+--------------+----------")
    for ref_id, group_id, name in rows:
        print(f"{str(ref_id).ljust(19)} | {str(group_id).ljust(12)} | {name or ''}")


def parse_args():
    p = argparse.ArgumentParser(description="Query helper for decrypted QQ NT databases.")
    p.add_argument("--db", required=True, help="Path to files_in_chat.clean.db")
    p.add_argument("--groups-db", default=None, help="Path to group_info.clean.db")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--groups", action="store_true", help="List groups by file count")
    group.add_argument("--group-id", help="List the files of one group")
    group.add_argument("--orphans", action="store_true", help="List group files with no group record")
    return p.parse_args()


def main():
    args = parse_args()
    groups_db = Path(args.groups_db).resolve() if args.groups_db else None
    conn = connect_db(Path(args.db).resolve(), groups_db)

    try:
        if args.groups:
            list_groups(conn)
        elif args.group_id is not None:
            show_group_files(conn, args.group_id)
        elif args.orphans:
            list_orphan_files(conn)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
