from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

from .exceptions import ErrorKind, InvalidTransitionError


class GroupKind(str, Enum):
    GROUP = "group"
    UNKNOWN = "unknown"     # private chats, channels, anything not yet modelled


class EntryStatus(str, Enum):
    PRESENT = "present"
    MISSING = "missing"
    ACTION_PENDING = "action_pending"
    ACTION_DONE = "action_done"
    ACTION_FAILED = "action_failed"


# ACTION_DONE and MISSING are terminal. FAILED may be retried by the operator.
ALLOWED_TRANSITIONS: Dict[EntryStatus, FrozenSet[EntryStatus]] = {
    EntryStatus.PRESENT: frozenset({EntryStatus.ACTION_PENDING}),
    EntryStatus.ACTION_PENDING: frozenset({EntryStatus.ACTION_DONE, EntryStatus.ACTION_FAILED}),
    EntryStatus.ACTION_FAILED: frozenset({EntryStatus.ACTION_PENDING}),
    EntryStatus.ACTION_DONE: frozenset(),
    EntryStatus.MISSING: frozenset(),
}


class Outcome(str, Enum):
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"
    ALREADY_DONE = "already_done"
    WOULD_SUCCEED = "would_succeed"
    WOULD_FAIL = "would_fail"


@dataclass(frozen=True)
class FileReference:
    """
    One media attachment as recorded by the chat client.
    """
    reference_id: str
    group_id: str
    sent_at: datetime               # UTC
    storage_relative_path: str      # YYYY-MM/Ori/<name>, may not exist on disk
    size_bytes: Optional[int] = None

    # Informational columns
    file_name: str = ""
    chat_type: int = 0
    message_id: Optional[int] = None
    source_path: Optional[str] = None


@dataclass(frozen=True)
class GroupInfo:
    group_id: str
    display_name: str
    kind: GroupKind = GroupKind.GROUP
    remark: Optional[str] = None
    owner_uid: Optional[str] = None
    member_count: Optional[int] = None
    has_left: bool = False


@dataclass(eq=False)
class CatalogEntry:
    """
    The joined, disk-resolved unit selection and actions operate on.
    Owns no file; the filesystem stays the source of truth for existence.
    """
    reference_id: str
    group_id: str
    display_name: str
    sent_at: datetime
    absolute_path: Optional[Path]           # None when the file is missing
    kind: GroupKind = GroupKind.GROUP
    companion_paths: Tuple[Path, ...] = ()  # thumbnails that travel with the original
    size_bytes: int = 0
    status: EntryStatus = EntryStatus.PRESENT

    @property
    def is_missing(self) -> bool:
        return self.absolute_path is None

    @property
    def all_paths(self) -> List[Path]:
        if self.absolute_path is None:
            return []
        return [self.absolute_path, *self.companion_paths]

    def transition(self, new_status: EntryStatus):
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"{self.reference_id}: {self.status.value} -> {new_status.value} is not allowed"
            )
        self.status = new_status


@dataclass
class EntryResult:
    reference_id: str
    group_id: str
    outcome: Outcome
    status: EntryStatus
    source: Optional[Path] = None
    destination: Optional[Path] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    bytes: int = 0


@dataclass
class ActionReport:
    """Per-entry results in selection order plus aggregate counts."""
    action: str
    dry_run: bool
    results: List[EntryResult] = field(default_factory=list)
    interrupted: bool = False

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def done(self) -> int:
        return self._count(Outcome.DONE)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def already_done(self) -> int:
        return self._count(Outcome.ALREADY_DONE)

    @property
    def would_succeed(self) -> int:
        return self._count(Outcome.WOULD_SUCCEED)

    @property
    def would_fail(self) -> int:
        return self._count(Outcome.WOULD_FAIL)

    @property
    def bytes_processed(self) -> int:
        return sum(r.bytes for r in self.results if r.outcome in (Outcome.DONE, Outcome.WOULD_SUCCEED))

    def status_by_reference(self) -> Dict[str, EntryStatus]:
        return {r.reference_id: r.status for r in self.results}


@dataclass
class GroupStats:
    group_id: str
    display_name: str
    kind: GroupKind
    file_count: int = 0
    present_count: int = 0
    missing_count: int = 0
    total_size: int = 0
    latest_sent_at: Optional[datetime] = None

    def format_size(self) -> str:
        return format_bytes(self.total_size)


def format_bytes(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024

    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} B"
