"""
Opening plaintext database images.

Decrypted databases are handled as byte blobs so the same bytes always give
the same records. Each blob is deserialized into a private in-memory
connection; nothing is ever written back to disk.
"""
import sqlite3
import logging
from typing import Optional

from ..exceptions import TruncatedDataError

SQLITE_MAGIC = b"SQLite format 3\x00"
SQLITE_HEADER_SIZE = 100


def check_image(data: bytes, label: str) -> bytes:
    """
    Validates the SQLite header of `data` and returns bytes ready to deserialize.
    Raises TruncatedDataError when the image cannot be a complete database.
    """
    if len(data) < SQLITE_HEADER_SIZE or not data.startswith(SQLITE_MAGIC):
        raise TruncatedDataError(f"{label}: not a SQLite database image ({len(data)} bytes)")

    page_size = int.from_bytes(data[16:18], "big")
    if page_size == 1:
        page_size = 65536
    if page_size < 512 or page_size & (page_size - 1):
        raise TruncatedDataError(f"{label}: invalid page size {page_size}")

    if len(data) % page_size:
        raise TruncatedDataError(f"{label}: {len(data)} bytes is not a whole number of {page_size}-byte pages")

    # The in-header page count is only trustworthy when version-valid-for matches the change counter.
    page_count = int.from_bytes(data[28:32], "big")
    if data[24:28] == data[92:96] and len(data) < page_count * page_size:
        raise TruncatedDataError(
            f"{label}: header declares {page_count} pages, image holds {len(data) // page_size}"
        )

    # WAL images cannot be opened from memory; flip the read/write versions to rollback mode.
    if data[18] == 2 or data[19] == 2:
        buf = bytearray(data)
        buf[18] = buf[19] = 1
        data = bytes(buf)

    return data


class DBManager:
    """Context manager around a read-only in-memory snapshot of one database image."""

    def __init__(self, data: bytes, label: str):
        self.data = data
        self.label = label
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn

        image = check_image(self.data, self.label)
        conn = sqlite3.connect(":memory:")
        try:
            conn.deserialize(image)
            conn.execute("PRAGMA query_only=ON;")
            # Touch the schema so malformed images fail here rather than mid-read.
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.DatabaseError as e:
            conn.close()
            raise TruncatedDataError(f"{self.label}: {e}") from e

        logging.debug(f"Opened {self.label} snapshot ({len(image)} bytes)")
        self._conn = conn
        return conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
