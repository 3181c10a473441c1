import requests
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set
from loguru import logger
from settings import Settings
from index_naming import index_pattern, prefix_with_separator, INDEX_BASE


class StoreError(Exception):
    """Failure of a single index store call"""

    def __init__(self, message: str, operation: str = "", index: Optional[str] = None, status_code: Optional[int] = None, detail: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.index = index
        self.status_code = status_code
        self.detail = detail


class StoreUnavailable(StoreError):
    pass


class IndexAlreadyExists(StoreError):
    pass


class IndexNotFound(StoreError):
    pass


class AliasConflict(StoreError):
    pass


class AliasUnresolved(StoreError):
    pass


class IndexStats(NamedTuple):
    name: str
    creation_date_ms: int = 0
    docs_count: int = 0
    size_bytes: int = 0

    @property
    def creation_time(self) -> float:
        return self.creation_date_ms / 1000.0


_CAT_COLUMNS = "index,creation.date,docs.count,store.size"

# index_already_exists_exception is the Elasticsearch 5.x name
_ALREADY_EXISTS_ERRORS = ("resource_already_exists_exception", "index_already_exists_exception")


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class IndexStore:
    """Index and alias administration for Elasticsearch 7+/OpenSearch"""

    supports_write_index_flag: bool = True

    def __init__(self, settings: Settings, version: str = "", session: Optional[requests.Session] = None) -> None:
        self.requests = session or settings.get_requests_object()
        self.base_url: str = settings.url
        self.timeout: int = settings.timeout
        self.version: str = version

    # === INDICES ===

    def list_indices(self, prefix: str = "") -> Dict[str, IndexStats]:
        """List every index under <prefix>-jaeger-* with its creation date and size"""
        pattern = index_pattern(prefix)
        params = {"format": "json", "h": _CAT_COLUMNS, "bytes": "b"}
        # cat indices only accepts expand_wildcards from 7.7 on; older versions include closed indices anyway
        if self.supports_write_index_flag:
            params["expand_wildcards"] = "open,closed"
        response = self._request("get", f"/_cat/indices/{pattern}", "list indices", params=params)
        if response.status_code == 404:
            logger.debug(f"No indices found matching pattern {pattern}")
            return {}
        self._check(response, "list indices")

        scope = prefix_with_separator(prefix) + INDEX_BASE + "-"
        indices: Dict[str, IndexStats] = {}
        for row in response.json():
            name = row.get("index", "")
            if not name.startswith(scope):
                continue
            indices[name] = self._stats_from_row(row)
        logger.debug(f"Retrieved {len(indices)} indices matching {pattern}")
        return indices

    def get_index_stats(self, name: str) -> IndexStats:
        response = self._request("get", f"/_cat/indices/{name}", "get index stats", name,
                                 params={"format": "json", "h": _CAT_COLUMNS, "bytes": "b"})
        if response.status_code == 404:
            raise IndexNotFound(f"Index {name} does not exist", "get index stats", name, 404, response.text)
        self._check(response, "get index stats", name)
        for row in response.json():
            if row.get("index") == name:
                return self._stats_from_row(row)
        raise IndexNotFound(f"Index {name} does not exist", "get index stats", name)

    def create_index(self, name: str, shards: int = 5, replicas: int = 1) -> None:
        body = {
            "settings": {
                "index": {
                    "number_of_shards": shards,
                    "number_of_replicas": replicas
                }
            }
        }
        response = self._request("put", f"/{name}", "create index", name, json=body)
        if response.status_code == 400 and self._error_type(response) in _ALREADY_EXISTS_ERRORS:
            raise IndexAlreadyExists(f"Index {name} already exists", "create index", name, 400, response.text)
        self._check(response, "create index", name)
        logger.info(f"Created index {name} (shards={shards}, replicas={replicas})")

    def delete_index(self, name: str) -> None:
        response = self._request("delete", f"/{name}", "delete index", name,
                                 params={"master_timeout": f"{self.timeout}s"})
        if response.status_code == 404:
            raise IndexNotFound(f"Index {name} already deleted or does not exist", "delete index", name, 404, response.text)
        self._check(response, "delete index", name)
        logger.info(f"Deleted index: {name}")

    # === ALIASES ===

    def create_alias(self, alias: str, target: str, is_write_index: bool = False) -> None:
        self._alias_actions([self._add_action(target, alias, is_write_index)], "create alias", target)
        logger.info(f"Added index {target} to alias {alias}")

    def repoint_alias(self, alias: str, old_target: str, new_target: str, read_alias: Optional[str] = None) -> None:
        """Move alias from old_target to new_target in one atomic request"""
        actions = [
            {"remove": {"index": old_target, "alias": alias}},
            self._add_action(new_target, alias, True),
        ]
        if read_alias:
            actions.append(self._add_action(new_target, read_alias, False))
        try:
            self._alias_actions(actions, "repoint alias", new_target)
        except IndexNotFound as e:
            raise AliasConflict(f"Alias {alias} is not attached to {old_target}", "repoint alias", old_target, e.status_code, e.detail)
        logger.info(f"Moved alias {alias} from {old_target} to {new_target}")

    def remove_from_alias(self, alias: str, indices: Iterable[str]) -> None:
        actions = [{"remove": {"index": index, "alias": alias}} for index in indices]
        if not actions:
            return
        self._alias_actions(actions, "remove from alias")
        for action in actions:
            logger.info(f"Removed index {action['remove']['index']} from alias {alias}")

    def resolve_alias(self, alias: str) -> str:
        """Return the single write target of an alias"""
        aliases = self._get_alias(alias)
        if not aliases:
            raise AliasUnresolved(f"Alias {alias} does not exist", "resolve alias", alias)

        flagged = [index for index, config in aliases.items() if config.get("is_write_index", False)]
        if len(flagged) == 1:
            return flagged[0]
        if len(aliases) == 1 and not flagged:
            return next(iter(aliases))
        raise AliasConflict(f"Alias {alias} resolves to {sorted(aliases)} with no single write index",
                            "resolve alias", alias)

    def alias_members(self, alias: str) -> Set[str]:
        return set(self._get_alias(alias))

    # === PRIVATE HELPERS ===

    def _add_action(self, index: str, alias: str, is_write_index: bool) -> Dict[str, Any]:
        add: Dict[str, Any] = {"index": index, "alias": alias}
        if is_write_index:
            add["is_write_index"] = True
        return {"add": add}

    def _alias_actions(self, actions: List[Dict[str, Any]], operation: str, index: Optional[str] = None) -> None:
        response = self._request("post", "/_aliases", operation, index, json={"actions": actions})
        if response.status_code == 404:
            raise IndexNotFound(f"{operation} failed: {response.text}", operation, index, 404, response.text)
        self._check(response, operation, index)

    def _get_alias(self, alias: str) -> Dict[str, Dict[str, Any]]:
        """Map of member index -> alias config, empty when the alias does not exist"""
        response = self._request("get", f"/_alias/{alias}", "get alias", alias)
        if response.status_code == 404:
            return {}
        self._check(response, "get alias", alias)

        members: Dict[str, Dict[str, Any]] = {}
        for index_name, index_data in response.json().items():
            config = index_data.get("aliases", {}).get(alias)
            if config is not None:
                members[index_name] = config
        return members

    def _stats_from_row(self, row: Dict[str, Any]) -> IndexStats:
        return IndexStats(
            name=row.get("index", ""),
            creation_date_ms=_to_int(row.get("creation.date")),
            docs_count=_to_int(row.get("docs.count")),
            size_bytes=_to_int(row.get("store.size")),
        )

    def _request(self, method: str, path: str, operation: str, index: Optional[str] = None, **kwargs: Any) -> requests.Response:
        try:
            return getattr(self.requests, method)(f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Store unavailable during {operation}{f' of {index}' if index else ''}: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}", operation, index) from e

    def _check(self, response: requests.Response, operation: str, index: Optional[str] = None) -> None:
        if response.status_code in (200, 201):
            return
        message = f"{operation} failed{f' for {index}' if index else ''} (HTTP {response.status_code}) - Response: {response.text}"
        logger.error(message)
        raise StoreError(message, operation, index, response.status_code, response.text)

    def _error_type(self, response: requests.Response) -> str:
        try:
            error = response.json().get("error", {})
        except ValueError:
            return ""
        if isinstance(error, dict):
            return error.get("type", "")
        return str(error)


class LegacyIndexStore(IndexStore):
    """Elasticsearch 5.x/6.x: aliases are written without the is_write_index flag"""

    supports_write_index_flag = False

    def _add_action(self, index: str, alias: str, is_write_index: bool) -> Dict[str, Any]:
        return {"add": {"index": index, "alias": alias}}

    def resolve_alias(self, alias: str) -> str:
        aliases = self._get_alias(alias)
        if not aliases:
            raise AliasUnresolved(f"Alias {alias} does not exist", "resolve alias", alias)
        if len(aliases) > 1:
            raise AliasConflict(f"Alias {alias} resolves to more than one index: {sorted(aliases)}",
                                "resolve alias", alias)
        return next(iter(aliases))


_SUPPORTED_MAJORS = {
    "opensearch": {1: IndexStore, 2: IndexStore, 3: IndexStore},
    "elasticsearch": {5: LegacyIndexStore, 6: LegacyIndexStore, 7: IndexStore, 8: IndexStore},
}


def connect_store(settings: Settings) -> IndexStore:
    """Probe the cluster version and return the matching store implementation"""
    session = settings.get_requests_object()
    try:
        response = session.get(f"{settings.url}/", timeout=settings.timeout)
    except requests.exceptions.RequestException as e:
        raise StoreUnavailable(f"Cannot reach index store at {settings.url}: {e}", "connect") from e
    if response.status_code != 200:
        raise StoreUnavailable(f"Index store at {settings.url} answered HTTP {response.status_code} - Response: {response.text}",
                               "connect", status_code=response.status_code, detail=response.text)

    version = response.json().get("version", {})
    number = str(version.get("number", ""))
    distribution = str(version.get("distribution", "elasticsearch")).lower()
    try:
        major = int(number.split(".")[0])
    except ValueError:
        raise StoreUnavailable(f"Cannot determine index store version from '{number}'", "connect")

    store_class = _SUPPORTED_MAJORS.get(distribution, {}).get(major)
    if store_class is None:
        raise StoreUnavailable(f"No supported protocol for {distribution} {number}", "connect")

    logger.info(f"Connected to {distribution} {number} using {store_class.__name__}")
    return store_class(settings, version=number, session=session)
