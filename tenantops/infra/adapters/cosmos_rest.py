from __future__ import annotations

import base64
import hashlib
import hmac
import json
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ...config.models import CollectionConfig
from ...utils.time import rfc1123_now
from ..contracts import DataStore
from ..errors import ConflictError, InfraError, NotFoundError, RecordWriteError, RetryableError

API_VERSION = "2018-12-31"
PAGE_SIZE = 100

# 408 request timeout, 429 throttled, 449 retry-with, 503 unavailable.
RETRYABLE_STATUS = (408, 429, 449, 503)


@dataclass(frozen=True)
class CosmosRestSettings:
    account: str
    database: str
    key: str
    endpoint: str = ""
    timeout_s: float = 30.0

    @property
    def base_url(self) -> str:
        return (self.endpoint or f"https://{self.account}.documents.azure.com:443").rstrip("/")


def auth_token(verb: str, resource_type: str, resource_link: str, date: str, key: str) -> str:
    """Master-key authorization header value for the Cosmos DB REST API."""
    text = f"{verb.lower()}\n{resource_type.lower()}\n{resource_link}\n{date.lower()}\n\n"
    digest = hmac.new(base64.b64decode(key), text.encode("utf-8"), hashlib.sha256).digest()
    sig = base64.b64encode(digest).decode("utf-8")
    return urllib.parse.quote(f"type=master&ver=1.0&sig={sig}", safe="")


def partition_key_value(record: Dict[str, Any], path: str) -> Any:
    """Resolve a partition key path such as ``/id`` or ``/owner/region`` against a record."""
    cur: Any = record
    for part in [p for p in path.split("/") if p]:
        if not isinstance(cur, dict) or part not in cur:
            raise RecordWriteError(f"record {record.get('id')!r} has no value at partition key path {path!r}")
        cur = cur[part]
    return cur


class CosmosRestDataStore(DataStore):
    """DataStore backed by the Cosmos DB (SQL API) REST endpoint."""

    def __init__(self, *, settings: CosmosRestSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self._session = session or requests.Session()

    def _headers(self, verb: str, resource_link: str) -> Dict[str, str]:
        date = rfc1123_now()
        return {
            "Authorization": auth_token(verb, "docs", resource_link, date, self.settings.key),
            "x-ms-date": date,
            "x-ms-version": API_VERSION,
            "Accept": "application/json",
        }

    def _link(self, collection: CollectionConfig) -> str:
        return f"dbs/{self.settings.database}/colls/{collection.name}"

    @staticmethod
    def _raise_for_status(resp: Any, what: str) -> None:
        code = int(resp.status_code)
        if code < 400:
            return
        body = str(getattr(resp, "text", "") or "")[:300]
        if code == 404:
            raise NotFoundError(f"{what}: not found ({body})")
        if code == 409:
            raise ConflictError(f"{what}: already exists")
        if code in RETRYABLE_STATUS:
            raise RetryableError(f"{what}: HTTP {code} ({body})")
        raise RecordWriteError(f"{what}: HTTP {code} ({body})")

    def list_records(self, collection: CollectionConfig) -> List[Dict[str, Any]]:
        link = self._link(collection)
        url = f"{self.settings.base_url}/{link}/docs"
        out: List[Dict[str, Any]] = []
        continuation = ""
        while True:
            headers = self._headers("GET", link)
            headers["x-ms-max-item-count"] = str(PAGE_SIZE)
            if continuation:
                headers["x-ms-continuation"] = continuation
            try:
                resp = self._session.get(url, headers=headers, timeout=self.settings.timeout_s)
            except requests.RequestException as e:
                raise RetryableError(f"list {link}: {e}") from e
            self._raise_for_status(resp, f"list {link}")
            payload = resp.json() or {}
            out.extend(d for d in (payload.get("Documents") or []) if isinstance(d, dict))
            continuation = str(resp.headers.get("x-ms-continuation") or "")
            if not continuation:
                return out

    def insert_record(self, collection: CollectionConfig, record: Dict[str, Any]) -> None:
        link = self._link(collection)
        url = f"{self.settings.base_url}/{link}/docs"
        pk = partition_key_value(record, collection.partition_key)
        try:
            body = json.dumps(record)
            pk_header = json.dumps([pk])
        except (TypeError, ValueError) as e:
            raise RecordWriteError(f"record {record.get('id')!r} is not JSON-serializable: {e}") from e
        headers = self._headers("POST", link)
        headers["Content-Type"] = "application/json"
        headers["x-ms-documentdb-partitionkey"] = pk_header
        try:
            resp = self._session.post(url, headers=headers, data=body, timeout=self.settings.timeout_s)
        except requests.RequestException as e:
            raise RetryableError(f"insert {link}/{record.get('id')}: {e}") from e
        try:
            self._raise_for_status(resp, f"insert {link}/{record.get('id')}")
        except NotFoundError as e:
            raise InfraError(str(e)) from e
