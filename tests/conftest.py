import sqlite3
from datetime import datetime, UTC
from pathlib import Path

import pytest

from qqcleaner import config
from qqcleaner.settings import Settings

FILES_COLUMNS = (
    config.COL_ELEMENT_ID,
    config.COL_MSG_ID,
    config.COL_PEER_UID,
    config.COL_CHAT_TYPE,
    config.COL_MSG_TIME,
    config.COL_FILE_NAME,
    config.COL_FILE_PATH,
    config.COL_FILE_SIZE,
)

GROUP_COLUMNS = (
    config.COL_GROUP_ID,
    config.COL_OWNER_UID,
    config.COL_MEMBER_COUNT,
    config.COL_GROUP_NAME,
    config.COL_GROUP_REMARK,
    config.COL_QUIT_FLAG,
)


def ts(year, month, day, hour=0) -> int:
    return int(datetime(year, month, day, hour, tzinfo=UTC).timestamp())


def file_row(ref_id, peer, sent, name, chat_type=2, size=None):
    return {
        config.COL_ELEMENT_ID: ref_id,
        config.COL_MSG_ID: ref_id * 10 if isinstance(ref_id, int) else None,
        config.COL_PEER_UID: peer,
        config.COL_CHAT_TYPE: chat_type,
        config.COL_MSG_TIME: sent,
        config.COL_FILE_NAME: name,
        config.COL_FILE_PATH: None,
        config.COL_FILE_SIZE: size,
    }


def group_row(group_id, name, members=10, left=0):
    return {
        config.COL_GROUP_ID: group_id,
        config.COL_OWNER_UID: "u_owner",
        config.COL_MEMBER_COUNT: members,
        config.COL_GROUP_NAME: name,
        config.COL_GROUP_REMARK: "",
        config.COL_QUIT_FLAG: left,
    }


def build_db(path: Path, table: str, columns, rows) -> bytes:
    """Creates a plaintext SQLite file with numeric column names and returns its bytes."""
    conn = sqlite3.connect(path)
    try:
        quoted = ", ".join(f'"{c}"' for c in columns)
        conn.execute(f'CREATE TABLE "{table}" ({quoted})')
        placeholders = ", ".join("?" for _ in columns)
        conn.executemany(
            f'INSERT INTO "{table}" VALUES ({placeholders})',
            [tuple(row.get(c) for c in columns) for row in rows],
        )
        conn.commit()
    finally:
        conn.close()
    return path.read_bytes()


# Sample account: two named groups, one group without files, one group
# missing from the group table, one private chat.
SAMPLE_GROUPS = [
    group_row(1001, "Family"),
    group_row(2002, "Work"),
    group_row(3003, "Quiet", left=1),
]

SAMPLE_FILES = [
    file_row(1, 1001, ts(2024, 1, 5), "a.jpg"),
    file_row(2, 1001, ts(2024, 3, 10), "b.jpg"),
    file_row(3, 2002, ts(2024, 2, 1), "c.jpg"),
    file_row(4, 2002, ts(2024, 2, 15), "gone.jpg"),
    file_row(5, 4004, ts(2024, 1, 20), "d.jpg"),
    file_row(6, "u_friend", ts(2024, 1, 21), "e.jpg", chat_type=1),
]

# reference id -> (relative path, size); "gone.jpg" is never written
SAMPLE_MEDIA = {
    "1": ("2024-01/Ori/a.jpg", 100),
    "2": ("2024-03/Ori/b.jpg", 200),
    "3": ("2024-02/Ori/c.jpg", 300),
    "5": ("2024-01/Ori/d.jpg", 50),
    "6": ("2024-01/Ori/e.jpg", 25),
}


@pytest.fixture
def make_db(tmp_path):
    """Returns a builder: make_db(name, table, columns, rows) -> bytes."""
    def _make(name, table, columns, rows):
        return build_db(tmp_path / name, table, columns, rows)
    return _make


@pytest.fixture
def sample_dbs(make_db):
    files_db = make_db("files.db", config.FILES_TABLE, FILES_COLUMNS, SAMPLE_FILES)
    group_db = make_db("groups.db", config.GROUP_TABLE, GROUP_COLUMNS, SAMPLE_GROUPS)
    return files_db, group_db


@pytest.fixture
def data_dir(tmp_path):
    """A picture root holding the sample media plus one thumbnail for a.jpg."""
    root = tmp_path / "Pic"
    for rel, size in SAMPLE_MEDIA.values():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x" * size)
    thumb = root / "2024-01" / config.THUMB_DIR / "a_0.jpg"
    thumb.parent.mkdir(parents=True, exist_ok=True)
    thumb.write_bytes(b"t" * 10)
    return root


@pytest.fixture
def nt_env(tmp_path, sample_dbs, data_dir):
    """A plaintext database directory and matching Settings."""
    db_dir = tmp_path / "nt_db"
    db_dir.mkdir()
    (db_dir / config.FILES_DB_NAME).write_bytes(sample_dbs[0])
    (db_dir / config.GROUP_DB_NAME).write_bytes(sample_dbs[1])
    return Settings(
        data_dirs=[data_dir],
        db_dir=db_dir,
        key_file=tmp_path / "no.key",
        log_dir=tmp_path / "logs",
        max_workers=1,
        migrate_target=tmp_path / "archive",
    )
