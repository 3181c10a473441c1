import requests
from typing import Any, Dict, Optional, Tuple, Union

DEFAULT_CONDITIONS: Dict[str, Any] = {"max_age": "2d"}

class Settings:

    def __init__(self, url: str, cert_file_path: Optional[str] = None, key_file_path: Optional[str] = None, username: Optional[str] = None, password: Optional[str] = None, ca_file_path: Optional[str] = None, skip_host_verify: bool = True, index_prefix: str = "", archive: bool = False, rollover: bool = False, static_archive: bool = False, timeout: int = 120, shards: int = 5, replicas: int = 1, rollover_conditions: Optional[Dict[str, Any]] = None, lookback_unit: str = "days", lookback_unit_count: int = 1, delete_workers: int = 4, retention_days: int = 7) -> None:
        self.url: str = url.rstrip("/")
        self.cert_file_path: Optional[str] = cert_file_path
        self.key_file_path: Optional[str] = key_file_path
        self.username: Optional[str] = username
        self.password: Optional[str] = password
        self.ca_file_path: Optional[str] = ca_file_path
        self.skip_host_verify: bool = skip_host_verify
        self.index_prefix: str = index_prefix
        self.archive: bool = archive
        self.rollover: bool = rollover
        self.static_archive: bool = static_archive
        self.timeout: int = timeout
        self.shards: int = shards
        self.replicas: int = replicas
        self.rollover_conditions: Dict[str, Any] = dict(DEFAULT_CONDITIONS) if rollover_conditions is None else rollover_conditions
        self.lookback_unit: str = lookback_unit
        self.lookback_unit_count: int = lookback_unit_count
        self.delete_workers: int = delete_workers
        self.retention_days: int = retention_days

    def get_requests_object(self) -> requests.Session:
        s: requests.Session = requests.Session()
        if self.cert_file_path and self.key_file_path:
            cert: Tuple[str, str] = (self.cert_file_path, self.key_file_path)
            s.cert = cert
        if self.username:
            s.auth = (self.username, self.password or "")
        verify: Union[bool, str] = not self.skip_host_verify
        if self.ca_file_path:
            verify = self.ca_file_path
        s.verify = verify
        s.headers = {"content-type": "application/json", 'charset':'UTF-8'}
        return s
