import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set
from loguru import logger
from index_store import IndexStore, IndexStats, StoreError, StoreUnavailable, IndexNotFound, AliasUnresolved
from index_naming import Family, IndexInfo, Kind, classify, write_alias


class CleanResult:
    """Outcome of one cleaning run"""

    def __init__(self) -> None:
        self.deleted: List[str] = []
        self.already_gone: List[str] = []
        self.skipped: List[str] = []
        self.failures: Dict[str, str] = {}

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def success(self) -> bool:
        return not self.failures


class IndexCleaner:
    """Deletes indices that aged out of the retention window, never touching write targets"""

    def __init__(self, store: IndexStore, max_workers: int = 4, clock: Callable[[], float] = time.time) -> None:
        if max_workers <= 0:
            raise ValueError(f"Delete workers must be > 0, got {max_workers}")
        self.store = store
        self.max_workers = max_workers
        self.clock = clock
        self._lock = threading.Lock()

    def clean(self, prefix: str, window_days: int, include_rollover: bool = False, include_archive: bool = False,
              cancel_event: Optional[threading.Event] = None) -> CleanResult:
        if window_days < 0:
            raise ValueError(f"Retention window must be >= 0 days, got {window_days}")

        logger.info(f"Cleaning indices older than {window_days} days (prefix='{prefix}', rollover={include_rollover}, archive={include_archive})")
        result = CleanResult()

        indices = self.store.list_indices(prefix)
        if not indices:
            logger.info("Index store has no indices, nothing to clean")
            return result

        protected = self.protected_indices(prefix)
        candidates = self.eligible_indices(indices, prefix, protected, window_days, include_rollover, include_archive)
        if not candidates:
            logger.info("No indices to delete")
            return result

        for name in candidates:
            logger.info(f"Removing {name}")
        self._delete_all(candidates, result, cancel_event or threading.Event())

        logger.info(f"Cleaning finished: {result.deleted_count} deleted, {len(result.already_gone)} already gone, "
                    f"{len(result.failures)} failed, {len(result.skipped)} skipped")
        return result

    def protected_indices(self, prefix: str) -> Set[str]:
        """Current write target of every family under the prefix"""
        protected = set()
        for family in Family:
            alias = write_alias(family, prefix)
            try:
                protected.add(self.store.resolve_alias(alias))
            except AliasUnresolved:
                logger.debug(f"Alias {alias} not bootstrapped, nothing to protect")
        logger.debug(f"Protected write targets: {sorted(protected)}")
        return protected

    def eligible_indices(self, indices: Dict[str, IndexStats], prefix: str, protected: Set[str], window_days: int,
                         include_rollover: bool, include_archive: bool) -> List[str]:
        eligible = []
        for name in sorted(indices):
            if name in protected:
                logger.debug(f"Skipping {name}: current write target")
                continue
            info = classify(name, prefix)
            if self._is_eligible(info, indices[name], window_days, include_rollover, include_archive):
                eligible.append(name)
        return eligible

    # === PRIVATE ===

    def _is_eligible(self, info: IndexInfo, stats: IndexStats, window_days: int, include_rollover: bool, include_archive: bool) -> bool:
        archive = info.family == Family.SPAN_ARCHIVE

        if info.kind == Kind.DAILY:
            if archive and not include_archive:
                return False
            today = datetime.fromtimestamp(self.clock(), tz=timezone.utc).date()
            return (today - info.day).days > window_days

        if info.kind == Kind.ROLLOVER:
            if not (include_archive if archive else include_rollover):
                return False
            return self._age_days(stats) > window_days

        if info.kind == Kind.STATIC_ARCHIVE:
            # the pre-alias archive index is kept in every mode except full alias mode (archive and rollover)
            if not (include_archive and include_rollover):
                return False
            return self._age_days(stats) > window_days

        logger.debug(f"Skipping {info.name}: {info.kind.value} name")
        return False

    def _age_days(self, stats: IndexStats) -> float:
        if not stats.creation_date_ms:
            logger.warning(f"Index {stats.name} has no creation date, treating it as new")
            return 0.0
        age_days = (self.clock() - stats.creation_time) / 86400
        if age_days < 0:
            logger.warning(f"Index {stats.name} has a future creation timestamp, treating it as new")
            return 0.0
        return age_days

    def _delete_all(self, candidates: List[str], result: CleanResult, cancel_event: threading.Event) -> None:
        abort = threading.Event()
        fatal: List[StoreUnavailable] = []

        def delete(name: str) -> None:
            if cancel_event.is_set() or abort.is_set():
                with self._lock:
                    result.skipped.append(name)
                return
            try:
                self.store.delete_index(name)
                with self._lock:
                    result.deleted.append(name)
            except IndexNotFound:
                logger.warning(f"Index {name} already deleted or does not exist")
                with self._lock:
                    result.already_gone.append(name)
            except StoreUnavailable as e:
                abort.set()
                with self._lock:
                    result.failures[name] = str(e)
                    fatal.append(e)
            except StoreError as e:
                logger.error(f"Failed to delete index {name}: {e}")
                with self._lock:
                    result.failures[name] = str(e)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            list(executor.map(delete, candidates))

        if fatal:
            logger.error(f"Store became unavailable, aborted after deleting {sorted(result.deleted)}")
            raise fatal[0]
