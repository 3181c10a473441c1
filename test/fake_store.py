"""In-memory index store used by the engine and scenario tests"""
from typing import Dict, Iterable, List, Optional, Set, Tuple

from index_store import IndexStats, IndexAlreadyExists, IndexNotFound, AliasConflict, AliasUnresolved
from index_naming import index_pattern, prefix_with_separator, INDEX_BASE


class FakeClock:

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIndexStore:
    """Mimics the IndexStore contract with write aliases resolving to one index"""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.indices: Dict[str, IndexStats] = {}
        # alias -> {index: is_write_index}
        self.aliases: Dict[str, Dict[str, bool]] = {}
        self.calls: List[Tuple[str, ...]] = []
        self.fail_delete: Dict[str, Exception] = {}
        self.fail_create_alias: Optional[Exception] = None

    # helpers for tests

    def add_index(self, name: str, age_days: float = 0.0, docs_count: int = 0, size_bytes: int = 0) -> None:
        created = self.clock() - age_days * 86400
        self.indices[name] = IndexStats(name, int(created * 1000), docs_count, size_bytes)

    def names(self) -> Set[str]:
        return set(self.indices)

    # store contract

    def list_indices(self, prefix: str = "") -> Dict[str, IndexStats]:
        self.calls.append(("list_indices", index_pattern(prefix)))
        scope = prefix_with_separator(prefix) + INDEX_BASE + "-"
        return {name: stats for name, stats in self.indices.items() if name.startswith(scope)}

    def get_index_stats(self, name: str) -> IndexStats:
        if name not in self.indices:
            raise IndexNotFound(f"Index {name} does not exist", "get index stats", name)
        return self.indices[name]

    def create_index(self, name: str, shards: int = 5, replicas: int = 1) -> None:
        self.calls.append(("create_index", name))
        if name in self.indices:
            raise IndexAlreadyExists(f"Index {name} already exists", "create index", name)
        self.add_index(name)

    def delete_index(self, name: str) -> None:
        self.calls.append(("delete_index", name))
        if name in self.fail_delete:
            raise self.fail_delete[name]
        if name not in self.indices:
            raise IndexNotFound(f"Index {name} does not exist", "delete index", name)
        del self.indices[name]
        for members in self.aliases.values():
            members.pop(name, None)

    def create_alias(self, alias: str, target: str, is_write_index: bool = False) -> None:
        self.calls.append(("create_alias", alias, target))
        if self.fail_create_alias:
            raise self.fail_create_alias
        if target not in self.indices:
            raise IndexNotFound(f"Index {target} does not exist", "create alias", target)
        self.aliases.setdefault(alias, {})[target] = is_write_index

    def repoint_alias(self, alias: str, old_target: str, new_target: str, read_alias: Optional[str] = None) -> None:
        self.calls.append(("repoint_alias", alias, old_target, new_target))
        members = self.aliases.get(alias, {})
        if old_target not in members or new_target not in self.indices:
            raise AliasConflict(f"Alias {alias} is not attached to {old_target}", "repoint alias", old_target)
        del members[old_target]
        members[new_target] = True
        if read_alias:
            self.aliases.setdefault(read_alias, {})[new_target] = False

    def remove_from_alias(self, alias: str, indices: Iterable[str]) -> None:
        for index in indices:
            self.calls.append(("remove_from_alias", alias, index))
            self.aliases.get(alias, {}).pop(index, None)

    def resolve_alias(self, alias: str) -> str:
        members = self.aliases.get(alias, {})
        if not members:
            raise AliasUnresolved(f"Alias {alias} does not exist", "resolve alias", alias)
        flagged = [index for index, is_write in members.items() if is_write]
        if len(flagged) == 1:
            return flagged[0]
        if len(members) == 1:
            return next(iter(members))
        raise AliasConflict(f"Alias {alias} has no single write index", "resolve alias", alias)

    def alias_members(self, alias: str) -> Set[str]:
        return set(self.aliases.get(alias, {}))
