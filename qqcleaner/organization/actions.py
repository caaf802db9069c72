"""
Executes delete, move and copy actions over a selection of catalog entries.

Each entry walks PRESENT -> ACTION_PENDING -> ACTION_DONE | ACTION_FAILED.
A failed entry is recorded and the batch moves on; MISSING entries are
skipped and ACTION_DONE entries are never attempted twice, so re-running a
selection after an interruption resumes where it stopped.
"""
import filecmp
import logging
import os
import re
import shutil
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from tqdm import tqdm

from .. import config
from ..exceptions import ErrorKind, FileOperationError, classify_os_error
from ..models import ActionReport, CatalogEntry, EntryResult, EntryStatus, Outcome

# Old path -> new path (None when deleted)
PathChanges = Dict[Path, Optional[Path]]
Problem = Tuple[ErrorKind, str]

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def _writable_ancestor(path: Path) -> bool:
    """True if the nearest existing ancestor directory of `path` is writable."""
    for parent in path.parents:
        if parent.exists():
            return parent.is_dir() and os.access(parent, os.W_OK)
    return False


def _check_source(path: Optional[Path], removing: bool = True) -> Optional[Problem]:
    if path is None or not os.path.lexists(path):
        return ErrorKind.ALREADY_GONE, f"{path} no longer exists"
    if path.is_dir():
        return ErrorKind.IS_DIRECTORY, f"{path} is a directory"
    if removing and not os.access(path.parent, os.W_OK):
        return ErrorKind.PERMISSION_DENIED, f"cannot remove entries from {path.parent}"
    return None


def _same_content(a: Path, b: Path) -> bool:
    return a.stat().st_size == b.stat().st_size and filecmp.cmp(a, b, shallow=False)


def group_folder(entry: CatalogEntry) -> str:
    """Folder name for a group under the migration target: <name>_<id>."""
    name = _UNSAFE_CHARS.sub("_", entry.display_name).strip(" .")
    if not name or name == entry.group_id:
        return entry.group_id or "unknown"
    return f"{name}_{entry.group_id}"


@dataclass(frozen=True)
class Delete:
    name: ClassVar[str] = "delete"
    removes_source: ClassVar[bool] = True

    def describe(self) -> str:
        return "Delete"

    def path_keys(self, entry: CatalogEntry) -> Set[Path]:
        return set(entry.all_paths)

    def claims(self, entry: CatalogEntry) -> List[Tuple[Path, Path]]:
        return []

    def validate(self, entry: CatalogEntry) -> Optional[Problem]:
        return _check_source(entry.absolute_path)

    def execute(self, entry: CatalogEntry) -> PathChanges:
        changes: PathChanges = {}
        # Thumbnails go first so a failure leaves the original in place for a retry.
        try:
            for companion in entry.companion_paths:
                companion.unlink(missing_ok=True)
                changes[companion] = None
            entry.absolute_path.unlink()
        except BaseException:
            entry.companion_paths = tuple(p for p in entry.companion_paths if p not in changes)
            raise
        changes[entry.absolute_path] = None
        return changes


@dataclass(frozen=True)
class MoveTo:
    """
    Moves an entry's files under `destination_root`. With `keep_source` the
    files are only copied: sources stay in place and the entry keeps its path.
    """
    destination_root: Path
    keep_structure: bool = True
    keep_source: bool = False

    @property
    def name(self) -> str:
        return "copy" if self.keep_source else "move"

    @property
    def removes_source(self) -> bool:
        return not self.keep_source

    def describe(self) -> str:
        verb = "Copy" if self.keep_source else "Move"
        return f"{verb} to {self.destination_root}"

    def destination_for(self, entry: CatalogEntry, path: Path) -> Path:
        """<root>/<group>/<YYYY-MM>/<Ori|Thumb>/<name>, or <root>/<name> when flat."""
        if not self.keep_structure:
            return self.destination_root / path.name
        return (self.destination_root / group_folder(entry)
                / path.parent.parent.name / path.parent.name / path.name)

    def _pairs(self, entry: CatalogEntry) -> List[Tuple[Path, Path]]:
        pairs = [(entry.absolute_path, self.destination_for(entry, entry.absolute_path))]
        for companion in entry.companion_paths:
            dest = self.destination_for(entry, companion)
            # A thumbnail already sitting at its destination has nothing left to move.
            if dest != companion and os.path.lexists(companion):
                pairs.append((companion, dest))
        return pairs

    def path_keys(self, entry: CatalogEntry) -> Set[Path]:
        keys = set(entry.all_paths)
        keys.update(self.destination_for(entry, p) for p in entry.all_paths)
        return keys

    def claims(self, entry: CatalogEntry) -> List[Tuple[Path, Path]]:
        """(source, destination) pairs this entry will write."""
        return self._pairs(entry)

    def validate(self, entry: CatalogEntry) -> Optional[Problem]:
        problem = _check_source(entry.absolute_path, removing=self.removes_source)
        if problem:
            return problem

        for src, dest in self._pairs(entry):
            if dest.exists():
                if not _same_content(src, dest):
                    return ErrorKind.DESTINATION_CONFLICT, f"{dest} already exists with different content"
                continue
            if not _writable_ancestor(dest):
                return ErrorKind.NOT_WRITABLE, f"destination {dest.parent} is not writable"
        return None

    def execute(self, entry: CatalogEntry) -> PathChanges:
        pairs = self._pairs(entry)

        # 1. Copy everything and verify sizes
        expected = {src: copy_verified(src, dest) for src, dest in pairs}

        # 2. Re-check destinations right before any source is removed
        for src, dest in pairs:
            size = dest.stat().st_size
            if size != expected[src]:
                raise FileOperationError(
                    f"{dest} has {size} bytes, expected {expected[src]}", ErrorKind.SIZE_MISMATCH
                )

        if self.keep_source:
            return dict(pairs)

        # 3. Remove sources, original last
        moved: PathChanges = {}
        try:
            for src, dest in pairs[1:]:
                src.unlink(missing_ok=True)
                moved[src] = dest
            pairs[0][0].unlink()
        except BaseException:
            # Thumbnails already moved are only reachable at their destination now.
            entry.companion_paths = tuple(moved.get(p) or p for p in entry.companion_paths)
            raise
        return dict(pairs)


Action = Union[Delete, MoveTo]


def copy_verified(src: Path, dest: Path) -> int:
    """
    Copies src to dest through a .part file and returns the verified size.
    A destination that already holds the same bytes (a run interrupted
    between copy and unlink) is accepted as is; anything else there is never
    overwritten.
    """
    expected = src.stat().st_size

    if dest.exists():
        if _same_content(src, dest):
            logging.debug(f"Already copied: {dest}")
            return expected
        raise FileOperationError(f"{dest} already exists with different content", ErrorKind.DESTINATION_CONFLICT)

    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + config.PARTIAL_SUFFIX)
    try:
        shutil.copy2(src, tmp)
        copied = tmp.stat().st_size
        if copied != expected:
            raise FileOperationError(
                f"Copy of {src} has {copied} bytes, expected {expected}", ErrorKind.SIZE_MISMATCH
            )
        os.replace(tmp, dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return expected


def _buckets(entries: Sequence[CatalogEntry], action: Action) -> List[List[int]]:
    """
    Partitions entry positions so that entries touching a common path
    (source or destination) land in the same bucket, in selection order.
    """
    parent = list(range(len(entries)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    owner: Dict[Path, int] = {}
    for i, entry in enumerate(entries):
        for key in action.path_keys(entry):
            j = owner.setdefault(key, i)
            if j != i:
                parent[find(i)] = find(j)

    buckets: Dict[int, List[int]] = defaultdict(list)
    for i in range(len(entries)):
        buckets[find(i)].append(i)
    return list(buckets.values())


@dataclass
class _Batch:
    # Source path -> where it went, so entries sharing one file act on it once.
    completed: PathChanges = field(default_factory=dict)
    # Destination -> the source that will be written there.
    claimed: Dict[Path, Path] = field(default_factory=dict)


class ActionEngine:
    def __init__(self, max_workers: int = 1, show_progress: bool = False):
        self.max_workers = max(1, max_workers)
        self.show_progress = show_progress
        self._lock = threading.Lock()

    def apply(self,
              selection: Iterable[CatalogEntry],
              action: Action,
              dry_run: bool = False,
              cancel_event: Optional[threading.Event] = None) -> ActionReport:
        """
        Applies `action` to every entry of `selection` in order and returns the report.
        The chat client's database is never touched; only files on disk change.
        """
        entries = list(selection)
        report = ActionReport(action=action.name, dry_run=dry_run)
        if not entries:
            logging.info("Nothing selected.")
            return report

        logging.info(
            f"{action.describe()}: {len(entries)} entries (DryRun={dry_run}, Workers={self.max_workers})"
        )

        batch = _Batch()
        stop = cancel_event or threading.Event()

        with tqdm(total=len(entries), desc=action.describe(), disable=not self.show_progress) as bar:
            if dry_run or self.max_workers == 1:
                results = self._run_sequential(entries, action, dry_run, stop, batch, bar)
            else:
                results = self._run_parallel(entries, action, stop, batch, bar)

        report.results = [results[i] for i in range(len(entries)) if i in results]
        report.interrupted = len(report.results) < len(entries) or any(
            r.error_kind is ErrorKind.INTERRUPTED for r in report.results
        )

        if report.interrupted:
            logging.warning(f"Interrupted after {len(report.results)} of {len(entries)} entries.")
        prefix = "[DRY RUN] " if dry_run else ""
        logging.info(
            f"{prefix}{action.describe()} finished: done={report.done} failed={report.failed} "
            f"skipped={report.skipped} already_done={report.already_done} "
            f"would_succeed={report.would_succeed} would_fail={report.would_fail}"
        )
        return report

    def _run_sequential(self, entries, action, dry_run, stop, batch, bar) -> Dict[int, EntryResult]:
        results: Dict[int, EntryResult] = {}
        for i, entry in enumerate(entries):
            if stop.is_set():
                break
            try:
                results[i] = self._apply_one(entry, action, dry_run, batch)
            except KeyboardInterrupt:
                stop.set()
                if entry.status is EntryStatus.ACTION_FAILED:
                    results[i] = self._result(entry, Outcome.FAILED, error_kind=ErrorKind.INTERRUPTED,
                                              error="interrupted by operator")
                break
            bar.update(1)
        return results

    def _run_parallel(self, entries, action, stop, batch, bar) -> Dict[int, EntryResult]:
        buckets = _buckets(entries, action)
        logging.debug(f"Dispatching {len(buckets)} independent buckets")

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = [
                executor.submit(self._run_bucket, [(i, entries[i]) for i in bucket], action, stop, batch, bar)
                for bucket in buckets
            ]
            try:
                wait(futures)
            except KeyboardInterrupt:
                # Workers stop at their next checkpoint; entries in flight finish.
                logging.warning("Interrupt received, waiting for in-flight entries...")
                stop.set()
                wait(futures)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        # Merge in selection order regardless of completion order.
        results: Dict[int, EntryResult] = {}
        for future in futures:
            if not future.cancelled():
                results.update(future.result())
        return results

    def _run_bucket(self, items, action, stop, batch, bar) -> Dict[int, EntryResult]:
        out: Dict[int, EntryResult] = {}
        for i, entry in items:
            if stop.is_set():
                break
            out[i] = self._apply_one(entry, action, False, batch)
            bar.update(1)
        return out

    def _result(self, entry: CatalogEntry, outcome: Outcome, **kwargs) -> EntryResult:
        kwargs.setdefault("source", entry.absolute_path)
        return EntryResult(
            reference_id=entry.reference_id,
            group_id=entry.group_id,
            outcome=outcome,
            status=entry.status,
            **kwargs,
        )

    def _apply_one(self, entry: CatalogEntry, action: Action, dry_run: bool, batch: _Batch) -> EntryResult:
        if entry.status is EntryStatus.MISSING:
            logging.debug(f"Skipping missing entry {entry.reference_id}")
            return self._result(entry, Outcome.SKIPPED)

        if entry.status is EntryStatus.ACTION_DONE:
            return self._result(entry, Outcome.ALREADY_DONE)

        if dry_run:
            return self._preview(entry, action, batch)

        if entry.status is EntryStatus.ACTION_PENDING:
            # Left over from an aborted run in this session
            entry.transition(EntryStatus.ACTION_FAILED)

        source = entry.absolute_path
        with self._lock:
            shared = action.removes_source and source in batch.completed
            new_location = batch.completed.get(source)

        entry.transition(EntryStatus.ACTION_PENDING)

        if shared:
            # Another entry in this batch already handled the same file.
            self._relocate(entry, {source: new_location})
            entry.transition(EntryStatus.ACTION_DONE)
            return self._result(entry, Outcome.DONE, source=source, destination=new_location)

        problem = self._claim(entry, action, batch)
        if problem:
            kind, message = problem
            entry.transition(EntryStatus.ACTION_FAILED)
            logging.error(f"Failed to {action.name} {source}: {message}")
            return self._result(entry, Outcome.FAILED, error_kind=kind, error=message)

        try:
            changes = action.execute(entry)
        except KeyboardInterrupt:
            entry.transition(EntryStatus.ACTION_FAILED)
            raise
        except (OSError, FileOperationError) as e:
            entry.transition(EntryStatus.ACTION_FAILED)
            kind = classify_os_error(e)
            logging.error(f"Failed to {action.name} {source}: {e}")
            return self._result(entry, Outcome.FAILED, error_kind=kind, error=str(e))
        except Exception as e:
            entry.transition(EntryStatus.ACTION_FAILED)
            logging.exception(f"Unexpected error while processing {source}")
            return self._result(entry, Outcome.FAILED, error_kind=ErrorKind.OS_ERROR, error=str(e))

        with self._lock:
            batch.completed.update(changes)
        if action.removes_source:
            self._relocate(entry, changes)
        entry.transition(EntryStatus.ACTION_DONE)
        logging.debug(f"{action.describe()}: {source} -> {changes.get(source)}")
        return self._result(entry, Outcome.DONE, source=source,
                            destination=changes.get(source), bytes=entry.size_bytes)

    def _claim(self, entry: CatalogEntry, action: Action, batch: _Batch) -> Optional[Problem]:
        """Reserves the entry's destinations; one already promised to another source is a conflict."""
        pairs = action.claims(entry)
        with self._lock:
            for src, dest in pairs:
                owner = batch.claimed.get(dest)
                if owner is not None and owner != src:
                    return ErrorKind.DESTINATION_CONFLICT, f"{dest} is also the destination of {owner}"
            for src, dest in pairs:
                batch.claimed[dest] = src
        return None

    def _preview(self, entry: CatalogEntry, action: Action, batch: _Batch) -> EntryResult:
        problem = action.validate(entry) or self._claim(entry, action, batch)
        if problem:
            kind, message = problem
            logging.info(f"[DRY RUN] {action.describe()} would fail for {entry.absolute_path}: {message}")
            return self._result(entry, Outcome.WOULD_FAIL, error_kind=kind, error=message)

        destination = action.destination_for(entry, entry.absolute_path) if isinstance(action, MoveTo) else None
        logging.info(f"[DRY RUN] {action.describe()} {entry.absolute_path}"
                     + (f" -> {destination}" if destination else ""))
        return self._result(entry, Outcome.WOULD_SUCCEED, destination=destination, bytes=entry.size_bytes)

    def _relocate(self, entry: CatalogEntry, changes: PathChanges):
        """After a move the entry points at the new files; deletes keep the old path for the report."""
        moved = changes.get(entry.absolute_path)
        if moved is None:
            return
        entry.absolute_path = moved
        entry.companion_paths = tuple(changes.get(p) or p for p in entry.companion_paths)
