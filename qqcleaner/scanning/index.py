import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, UTC
from typing import Callable, Dict, Iterator, List, Optional, Sequence
from pathlib import Path

from tqdm import tqdm

from .. import config
from ..database.store import RecordStore
from ..models import CatalogEntry, EntryStatus, FileReference, GroupInfo, GroupStats
from .resolver import ResolvedPaths, resolve_candidates

GROUP_SORT_KEYS = {
    "size": lambda s: (-s.total_size, s.group_id),
    "files": lambda s: (-s.present_count, s.group_id),
    "name": lambda s: (s.display_name.casefold(), s.group_id),
}

PathResolver = Callable[[FileReference], Sequence[Path]]


class ChatMediaIndex:
    """
    The session catalog: every FileReference joined with its group and
    resolved against the disk.

    Built once per process and reused by every selection and action.
    Rebuilding after files were moved or deleted would re-resolve against a
    changed disk and lose the status the action engine recorded.
    """
    def __init__(self, entries: List[CatalogEntry], groups: Dict[str, GroupInfo]):
        self._entries: Dict[str, CatalogEntry] = {e.reference_id: e for e in entries}
        self.groups = groups
        self.built_at = datetime.now(UTC)

    @classmethod
    def build(cls,
              store: RecordStore,
              path_resolver: PathResolver,
              max_workers: int = config.DEFAULT_MAX_WORKERS,
              show_progress: bool = False) -> "ChatMediaIndex":
        refs = list(store.files.values())
        logging.info(f"Resolving {len(refs)} file references on disk...")

        def _resolve(ref: FileReference) -> ResolvedPaths:
            return resolve_candidates(path_resolver(ref))

        # Existence checks are independent stat calls; map() keeps store order.
        if max_workers <= 1:
            resolved = [_resolve(ref) for ref in tqdm(refs, desc="Resolving", disable=not show_progress)]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                resolved = list(tqdm(executor.map(_resolve, refs),
                                     total=len(refs), desc="Resolving", disable=not show_progress))

        groups = dict(store.groups)
        entries = []
        for ref, paths in zip(refs, resolved):
            group = store.group_for(ref)
            groups.setdefault(group.group_id, group)
            entries.append(CatalogEntry(
                reference_id=ref.reference_id,
                group_id=ref.group_id,
                display_name=group.display_name or group.group_id,
                sent_at=ref.sent_at,
                absolute_path=paths.primary,
                kind=group.kind,
                companion_paths=paths.companions,
                size_bytes=paths.size_bytes,
                status=EntryStatus.PRESENT if paths.primary else EntryStatus.MISSING,
            ))

        missing = sum(1 for e in entries if e.is_missing)
        logging.info(f"Index built: {len(entries)} entries, {missing} missing on disk.")
        return cls(entries, groups)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries.values())

    def __contains__(self, reference_id: str) -> bool:
        return reference_id in self._entries

    def get(self, reference_id: str) -> Optional[CatalogEntry]:
        return self._entries.get(reference_id)

    def entries(self) -> List[CatalogEntry]:
        return list(self._entries.values())

    def group_ids(self) -> List[str]:
        return sorted({e.group_id for e in self})

    def group_stats(self, time_range=None, sort_by: str = "size") -> List[GroupStats]:
        """
        Per-group totals. With `time_range`, only entries whose sent_at falls
        inside it are counted. `sort_by` is one of GROUP_SORT_KEYS: "size"
        (largest first), "files" (most files on disk first) or "name".
        """
        if sort_by not in GROUP_SORT_KEYS:
            raise ValueError(f"unknown sort key {sort_by!r}, expected one of {', '.join(GROUP_SORT_KEYS)}")

        stats: Dict[str, GroupStats] = {}
        for entry in self:
            if time_range is not None and not time_range.contains(entry.sent_at):
                continue

            st = stats.get(entry.group_id)
            if st is None:
                st = stats[entry.group_id] = GroupStats(
                    group_id=entry.group_id,
                    display_name=entry.display_name,
                    kind=entry.kind,
                )

            st.file_count += 1
            if entry.status is EntryStatus.MISSING:
                st.missing_count += 1
            elif entry.status is not EntryStatus.ACTION_DONE:
                # Deleted or moved entries no longer occupy the data directory.
                st.present_count += 1
                st.total_size += entry.size_bytes
            if st.latest_sent_at is None or entry.sent_at > st.latest_sent_at:
                st.latest_sent_at = entry.sent_at

        return sorted(stats.values(), key=GROUP_SORT_KEYS[sort_by])
