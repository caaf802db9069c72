import sqlite3
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, Optional, Tuple

from .. import config
from ..exceptions import TruncatedDataError
from ..models import FileReference, GroupInfo, GroupKind
from .db import DBManager
from .schema import (
    FILES_OPTIONAL, FILES_REQUIRED, GROUPS_OPTIONAL, GROUPS_REQUIRED,
    quote, validate_table,
)


def media_relative_path(sent_at: datetime, file_name: str) -> str:
    """Device-relative location of an original image: YYYY-MM/Ori/<name>."""
    if not file_name:
        return ""
    month_dir = config.MONTH_DIR_PATTERN.format(year=sent_at.year, month=sent_at.month)
    return f"{month_dir}/{config.ORIGINAL_DIR}/{file_name}"


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _id_text(value) -> str:
    # Group numbers show up as INTEGER in one table and TEXT in the other.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


@dataclass
class RecordStore:
    """
    Typed records parsed from one decrypt pass:
    reference_id -> FileReference and group_id -> GroupInfo.
    Parsing is a pure function of the input bytes.
    """
    files: Dict[str, FileReference] = field(default_factory=dict)
    groups: Dict[str, GroupInfo] = field(default_factory=dict)

    @classmethod
    def parse(cls, files_db: bytes, group_db: bytes) -> "RecordStore":
        with DBManager(files_db, config.FILES_DB_NAME) as conn:
            files = _guarded(_read_files, conn, config.FILES_DB_NAME)
        with DBManager(group_db, config.GROUP_DB_NAME) as conn:
            groups = _guarded(_read_groups, conn, config.GROUP_DB_NAME)

        logging.info(f"Parsed {len(files)} file references and {len(groups)} groups.")
        return cls(files=files, groups=groups)

    @classmethod
    def from_paths(cls, files_path: Path, group_path: Path) -> "RecordStore":
        """Parses two decrypted database files from disk."""
        return cls.parse(files_path.read_bytes(), group_path.read_bytes())

    def group_for(self, ref: FileReference) -> GroupInfo:
        """Returns the GroupInfo for `ref`, or a placeholder when the group table has none."""
        group = self.groups.get(ref.group_id)
        if group is not None:
            return group
        kind = GroupKind.GROUP if ref.chat_type == config.GROUP_CHAT_TYPE else GroupKind.UNKNOWN
        return GroupInfo(group_id=ref.group_id, display_name="", kind=kind)


def _guarded(reader, conn: sqlite3.Connection, label: str):
    try:
        return reader(conn)
    except sqlite3.DatabaseError as e:
        raise TruncatedDataError(f"{label}: {e}") from e


def _select(conn: sqlite3.Connection, table: str, columns: Tuple[str, ...]):
    cur = conn.cursor()
    cur.execute(f'SELECT {", ".join(quote(c) for c in columns)} FROM "{table}"')
    for row in cur:
        yield dict(zip(columns, row))


def _read_files(conn: sqlite3.Connection) -> Dict[str, FileReference]:
    columns = validate_table(conn, config.FILES_TABLE, FILES_REQUIRED, FILES_OPTIONAL)

    files: Dict[str, FileReference] = {}
    dropped = 0
    duplicates = 0

    for values in _select(conn, config.FILES_TABLE, columns):
        raw_id = values[config.COL_ELEMENT_ID]
        raw_time = _optional_int(values[config.COL_MSG_TIME])
        if raw_id is None or raw_time is None:
            dropped += 1
            continue

        try:
            sent_at = datetime.fromtimestamp(raw_time, UTC)
        except (OverflowError, OSError, ValueError):
            dropped += 1
            continue

        reference_id = _id_text(raw_id)
        if reference_id in files:
            duplicates += 1
            continue

        file_name = values[config.COL_FILE_NAME] or ""
        peer = values[config.COL_PEER_UID]
        source_path = values.get(config.COL_FILE_PATH)

        files[reference_id] = FileReference(
            reference_id=reference_id,
            group_id=_id_text(peer) if peer is not None else "",
            sent_at=sent_at,
            storage_relative_path=media_relative_path(sent_at, file_name),
            size_bytes=_optional_int(values.get(config.COL_FILE_SIZE)),
            file_name=file_name,
            chat_type=_optional_int(values[config.COL_CHAT_TYPE]) or 0,
            message_id=_optional_int(values.get(config.COL_MSG_ID)),
            source_path=source_path or None,
        )

    if dropped:
        logging.warning(f"Dropped {dropped} file rows without id or timestamp.")
    if duplicates:
        logging.warning(f"Ignored {duplicates} duplicate file references (kept first occurrence).")
    return files


def _read_groups(conn: sqlite3.Connection) -> Dict[str, GroupInfo]:
    columns = validate_table(conn, config.GROUP_TABLE, GROUPS_REQUIRED, GROUPS_OPTIONAL)

    groups: Dict[str, GroupInfo] = {}
    for values in _select(conn, config.GROUP_TABLE, columns):
        raw_id = values[config.COL_GROUP_ID]
        if raw_id is None:
            continue
        group_id = _id_text(raw_id)
        if group_id in groups:
            continue

        owner = values.get(config.COL_OWNER_UID)
        groups[group_id] = GroupInfo(
            group_id=group_id,
            display_name=values[config.COL_GROUP_NAME] or "",
            kind=GroupKind.GROUP,
            remark=values.get(config.COL_GROUP_REMARK) or None,
            owner_uid=str(owner) if owner else None,
            member_count=_optional_int(values.get(config.COL_MEMBER_COUNT)),
            has_left=_optional_int(values.get(config.COL_QUIT_FLAG)) == 1,
        )
    return groups
