import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Tuple

from .. import config
from ..models import FileReference


def thumb_names(file_name: str) -> List[str]:
    """abc.jpg -> [abc_0.jpg, abc_720.jpg]"""
    p = PurePosixPath(file_name)
    return [f"{p.stem}{suffix}{p.suffix}" for suffix in config.THUMB_SUFFIXES]


class PicPathResolver:
    """
    Maps a FileReference onto candidate absolute paths under one or more
    picture roots (``.../nt_data/Pic``).

    Originals are tried first across all roots, then thumbnails, so the first
    existing candidate is the best copy available.
    """
    def __init__(self, roots: Sequence[Path]):
        self.roots = [Path(r) for r in roots]

    def __call__(self, ref: FileReference) -> List[Path]:
        if not ref.storage_relative_path:
            return []

        rel = PurePosixPath(ref.storage_relative_path)
        month_dir = rel.parts[0]

        candidates = [root.joinpath(*rel.parts) for root in self.roots]
        for root in self.roots:
            for name in thumb_names(rel.name):
                candidates.append(root / month_dir / config.THUMB_DIR / name)
        return candidates


@dataclass(frozen=True)
class ResolvedPaths:
    primary: Optional[Path]
    companions: Tuple[Path, ...] = ()
    size_bytes: int = 0


def probe(path: Path) -> Optional[int]:
    """Read-only existence check. Returns the size in bytes, or None if absent."""
    try:
        return os.stat(path).st_size
    except OSError:
        return None


def resolve_candidates(candidates: Iterable[Path]) -> ResolvedPaths:
    seen = set()
    existing: List[Tuple[Path, int]] = []
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        size = probe(path)
        if size is not None:
            existing.append((path, size))

    if not existing:
        return ResolvedPaths(primary=None)

    return ResolvedPaths(
        primary=existing[0][0],
        companions=tuple(p for p, _ in existing[1:]),
        size_bytes=sum(size for _, size in existing),
    )
