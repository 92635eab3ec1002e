import copy
import os
import threading
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from campaignflow.specs.common.errors import ConflictError, NotFoundError
from campaignflow.specs.common.record_store_spec import BATCH_WRITE_LIMIT, RecordStore
from campaignflow.shared.cosmos_client import CosmosRecordStore
from campaignflow.shared.logging_utils import info as log_info


class InMemoryRecordStore:
    """Process-local store with the same conditional-write semantics as Cosmos.

    Used for local runs and tests. Records are deep-copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.batch_calls: List[int] = []

    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._items.get((pk, sk))
            return copy.deepcopy(item) if item is not None else None

    def put_if_absent(self, record: Dict[str, Any]) -> bool:
        key = (record["pk"], record["sk"])
        with self._lock:
            if key in self._items:
                return False
            self._items[key] = copy.deepcopy(record)
            return True

    def put(self, record: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._items[(record["pk"], record["sk"])] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def update_if_version(
        self,
        pk: str,
        sk: str,
        changes: Dict[str, Any],
        expected_version: int,
    ) -> Dict[str, Any]:
        with self._lock:
            current = self._items.get((pk, sk))
            if current is None:
                raise NotFoundError("Record", f"{pk}/{sk}")
            stored_version = current.get("version")
            if stored_version != expected_version:
                raise ConflictError(
                    f"Version mismatch for '{pk}/{sk}': expected {expected_version}, found {stored_version}",
                    code="VERSION_CONFLICT",
                    details={"expectedVersion": expected_version, "currentVersion": stored_version},
                )
            updated = {**current, **copy.deepcopy(changes), "version": expected_version + 1}
            self._items[(pk, sk)] = updated
            return copy.deepcopy(updated)

    def batch_write(self, records: List[Dict[str, Any]]) -> int:
        written = 0
        for i in range(0, len(records), BATCH_WRITE_LIMIT):
            chunk = records[i:i + BATCH_WRITE_LIMIT]
            with self._lock:
                for record in chunk:
                    self._items[(record["pk"], record["sk"])] = copy.deepcopy(record)
            self.batch_calls.append(len(chunk))
            written += len(chunk)
        return written

    def query(self, pk: str, sk_prefix: str = "") -> List[Dict[str, Any]]:
        with self._lock:
            rows = [
                copy.deepcopy(v)
                for (p, s), v in self._items.items()
                if p == pk and s.startswith(sk_prefix)
            ]
        return sorted(rows, key=lambda r: r["sk"])

    def query_by_tenant(self, tenant_id: str, sk_prefix: str = "") -> List[Dict[str, Any]]:
        with self._lock:
            rows = [
                copy.deepcopy(v)
                for (_, s), v in self._items.items()
                if v.get("tenantId") == tenant_id and s.startswith(sk_prefix)
            ]
        return sorted(rows, key=lambda r: (r["pk"], r["sk"]))


def _select_backend() -> RecordStore:
    backend = os.getenv("RECORD_STORE_BACKEND", "auto").lower()
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "cosmos":
        return CosmosRecordStore()
    # auto-detect cosmos if config present
    if os.getenv("COSMOS_DB_CONNECTION_STRING") and os.getenv("COSMOS_DB_NAME"):
        return CosmosRecordStore()
    log_info(None, "record_store:memory_fallback")
    return InMemoryRecordStore()


@lru_cache(maxsize=1)
def get_record_store() -> RecordStore:
    """Get or create the process-wide record store"""
    return _select_backend()
