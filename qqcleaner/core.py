import logging
import threading
from typing import Iterable, List, Optional

from .database.cache import DecryptedCache
from .database.cipher import Decryptor, PageCipherAdapter, load_key
from .database.store import RecordStore
from .models import ActionReport, CatalogEntry
from .organization.actions import Action, ActionEngine
from .organization.selection import ALL_GROUPS, GroupSelection, TimeRange, select
from .scanning.index import ChatMediaIndex, PathResolver
from .scanning.resolver import PicPathResolver
from .settings import Settings


class CleanerApp:
    def __init__(self,
                 settings: Settings,
                 decryptor: Optional[Decryptor] = None,
                 path_resolver: Optional[PathResolver] = None):
        self.settings = settings
        self.decryptor = decryptor or PageCipherAdapter()
        self.path_resolver = path_resolver or PicPathResolver(settings.data_dirs)
        self.cache = DecryptedCache()
        self._index: Optional[ChatMediaIndex] = None

    def _key(self) -> Optional[str]:
        key_file = self.settings.key_file
        if not key_file.exists():
            logging.debug(f"No key file at {key_file}")
            return None
        return load_key(key_file)

    def load_store(self) -> RecordStore:
        """
        Decrypts (or reuses the cached plaintext of) both databases and parses them.
        Any fatal error propagates before an index exists.
        """
        key = self._key()
        logging.info(f"Loading databases from {self.settings.db_dir}")
        files_db = self.cache.load(self.settings.files_db_path, key, self.decryptor)
        group_db = self.cache.load(self.settings.group_db_path, key, self.decryptor)
        return RecordStore.parse(files_db, group_db)

    def load_index(self, show_progress: bool = False) -> ChatMediaIndex:
        """Builds the index on first call; later calls return the same object."""
        if self._index is None:
            if not self.settings.data_dirs:
                logging.warning("No data directories configured; every file will be reported missing.")
            store = self.load_store()
            self._index = ChatMediaIndex.build(
                store,
                self.path_resolver,
                max_workers=self.settings.max_workers,
                show_progress=show_progress,
            )
        return self._index

    def select(self,
               groups: GroupSelection = ALL_GROUPS,
               time_range: Optional[TimeRange] = None) -> List[CatalogEntry]:
        time_range = time_range or TimeRange.all()
        selection = select(self.load_index(), groups, time_range)
        logging.info(f"Selected {len(selection)} entries ({time_range.describe()}).")
        return selection

    def apply(self,
              selection: Iterable[CatalogEntry],
              action: Action,
              dry_run: bool = False,
              cancel_event: Optional[threading.Event] = None,
              show_progress: bool = False) -> ActionReport:
        engine = ActionEngine(max_workers=self.settings.max_workers, show_progress=show_progress)
        return engine.apply(selection, action, dry_run=dry_run, cancel_event=cancel_event)
