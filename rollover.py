import json
import re
import time
from typing import Any, Callable, Dict, List, Optional
from loguru import logger
from index_store import IndexStore, IndexStats, IndexAlreadyExists, AliasUnresolved
from index_naming import Family, Kind, classify, first_index, next_index, read_alias, static_archive_index, write_alias

_DURATION_UNITS = {
    "nanos": 1e-9,
    "micros": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

_SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
    "pb": 1024 ** 5,
}

LOOKBACK_UNITS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
    "weeks": 7 * 86400,
    "months": 30 * 86400,
    "years": 365 * 86400,
}

_QUANTITY = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-z]+)\s*$")


def parse_duration(value: str) -> float:
    """Parse an Elasticsearch time value such as '2d' or '0s' into seconds"""
    match = _QUANTITY.match(str(value).lower())
    if not match or match.group(2) not in _DURATION_UNITS:
        raise ValueError(f"Invalid duration '{value}'")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def parse_size(value: str) -> int:
    """Parse an Elasticsearch byte size such as '50gb' into bytes"""
    match = _QUANTITY.match(str(value).lower())
    if not match or match.group(2) not in _SIZE_UNITS:
        raise ValueError(f"Invalid size '{value}'")
    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2)])


def parse_conditions(raw: str) -> Dict[str, Any]:
    """Parse and validate a CONDITIONS JSON object"""
    try:
        conditions = json.loads(raw) if raw.strip() else {}
    except ValueError as e:
        raise ValueError(f"Rollover conditions are not valid JSON: {raw}") from e
    if not isinstance(conditions, dict):
        raise ValueError(f"Rollover conditions must be a JSON object, got: {raw}")

    unknown = set(conditions) - {"max_age", "max_docs", "max_size"}
    if unknown:
        raise ValueError(f"Unsupported rollover conditions: {sorted(unknown)}")
    if "max_age" in conditions:
        parse_duration(conditions["max_age"])
    if "max_size" in conditions:
        parse_size(conditions["max_size"])
    if "max_docs" in conditions:
        int(conditions["max_docs"])
    return conditions


def conditions_met(conditions: Dict[str, Any], stats: IndexStats, now: float) -> bool:
    """True when any condition holds; no conditions means roll unconditionally"""
    if not conditions:
        return True
    if "max_age" in conditions and now - stats.creation_time >= parse_duration(conditions["max_age"]):
        return True
    if "max_docs" in conditions and stats.docs_count >= int(conditions["max_docs"]):
        return True
    if "max_size" in conditions and stats.size_bytes >= parse_size(conditions["max_size"]):
        return True
    return False


class RolloverEngine:
    """Bootstraps and advances the alias-indirected index chain of each family"""

    def __init__(self, store: IndexStore, shards: int = 5, replicas: int = 1, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.shards = shards
        self.replicas = replicas
        self.clock = clock

    def init(self, family: Family, prefix: str = "", static_archive: bool = False) -> str:
        """Create the first index and its aliases; returns the write target. Idempotent."""
        alias = write_alias(family, prefix)
        try:
            target = self.store.resolve_alias(alias)
            logger.info(f"Alias {alias} already points to {target}, nothing to initialize")
        except AliasUnresolved:
            target = self._find_orphan(family, prefix, static_archive)
            if target:
                logger.warning(f"Found index {target} without write alias {alias}, attaching it")
            else:
                target = first_index(family, prefix, static_archive)
                try:
                    self.store.create_index(target, self.shards, self.replicas)
                except IndexAlreadyExists:
                    logger.warning(f"Index {target} already exists, attaching alias to it")
            self.store.create_alias(alias, target, is_write_index=True)

        self._ensure_read_alias(family, prefix, target)
        return target

    def rollover(self, family: Family, prefix: str = "", conditions: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """Roll the write alias to a new index when a condition holds; returns the new index or None"""
        alias = write_alias(family, prefix)
        current = self.store.resolve_alias(alias)
        stats = self.store.get_index_stats(current)

        if not conditions_met(conditions or {}, stats, self.clock()):
            logger.info(f"No rollover needed for {alias} -> {current} (conditions {conditions} not met)")
            return None

        new_index = next_index(current, prefix)
        try:
            self.store.create_index(new_index, self.shards, self.replicas)
        except IndexAlreadyExists:
            logger.warning(f"Index {new_index} already exists from an interrupted rollover, reusing it")

        self.store.repoint_alias(alias, current, new_index, read_alias=read_alias(family, prefix))
        logger.info(f"Rolled over: {current} -> {new_index}")
        return new_index

    def lookback(self, family: Family, prefix: str = "", unit: str = "days", unit_count: int = 1) -> List[str]:
        """Detach indices older than unit_count units from the read alias; never deletes data"""
        if unit not in LOOKBACK_UNITS:
            raise ValueError(f"Unsupported lookback unit '{unit}', expected one of {sorted(LOOKBACK_UNITS)}")
        if unit_count < 0:
            raise ValueError(f"Lookback unit count must be >= 0, got {unit_count}")

        alias = read_alias(family, prefix)
        members = self.store.alias_members(alias)
        if not members:
            logger.info(f"Alias {alias} has no indices, nothing to look back over")
            return []

        try:
            current = self.store.resolve_alias(write_alias(family, prefix))
        except AliasUnresolved:
            current = None

        cutoff = self.clock() - unit_count * LOOKBACK_UNITS[unit]
        stats = self.store.list_indices(prefix)
        expired = sorted(
            name for name in members
            if name != current and name in stats and stats[name].creation_time < cutoff
        )
        if not expired:
            logger.info(f"No indices to remove from alias {alias}")
            return []

        self.store.remove_from_alias(alias, expired)
        return expired

    def _ensure_read_alias(self, family: Family, prefix: str, target: str) -> None:
        alias = read_alias(family, prefix)
        if not self.store.alias_members(alias):
            self.store.create_alias(alias, target)

    def _find_orphan(self, family: Family, prefix: str, static_archive: bool) -> Optional[str]:
        """Latest existing index of the family left behind by an interrupted init"""
        indices = self.store.list_indices(prefix)
        if static_archive and family == Family.SPAN_ARCHIVE:
            static = static_archive_index(prefix)
            return static if static in indices else None

        chain = [info for info in (classify(name, prefix) for name in indices)
                 if info.kind == Kind.ROLLOVER and info.family == family]
        if not chain:
            return None
        return max(chain, key=lambda info: info.sequence).name
