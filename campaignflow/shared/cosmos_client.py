# Cosmos DB backed record store

import os
import time
import logging
import backoff
from collections import OrderedDict
from functools import lru_cache
from typing import Optional, List, Dict, Any
from azure.core import MatchConditions
from azure.cosmos import CosmosClient, exceptions
from azure.cosmos.container import ContainerProxy
from campaignflow.specs.common.errors import ConfigurationError, ConflictError, NotFoundError
from campaignflow.specs.common.record_store_spec import BATCH_WRITE_LIMIT

class RetryableCosmosError(Exception):
    """Indicates a Cosmos DB operation that should be retried"""
    pass


_SYSTEM_FIELDS = ("_rid", "_self", "_etag", "_attachments", "_ts")


def _doc_id(sk: str) -> str:
    # '#' is not allowed in Cosmos ids; ids only need to be unique per partition
    return sk.replace("#", ":")


def _raise_if_retryable(exc: exceptions.CosmosHttpResponseError, action: str) -> None:
    if exc.status_code in (429, 503):  # Too Many Requests or Service Unavailable
        error_msg = f"Retryable error {action}: {exc}"
        logging.warning(error_msg)
        raise RetryableCosmosError(error_msg) from exc


class CosmosRecordStore:
    """Record store over a single container partitioned on ``/pk``.

    A record's own ``id`` is kept under ``recordId`` because the Cosmos
    ``id`` is derived from the sort key.
    """

    # Max retries and timeout configuration
    MAX_RETRIES = 3
    OPERATION_TIMEOUT = 10.0    # 10s

    def __init__(self, container: Optional[ContainerProxy] = None):
        self.container = container if container is not None else _container_from_env()

    @staticmethod
    def _to_document(record: Dict[str, Any]) -> Dict[str, Any]:
        if not record.get("pk") or not record.get("sk"):
            raise ValueError("record requires pk and sk")
        doc = dict(record)
        if "id" in doc:
            doc["recordId"] = doc["id"]
        doc["id"] = _doc_id(record["sk"])
        return doc

    @staticmethod
    def _from_document(doc: Dict[str, Any]) -> Dict[str, Any]:
        record = {k: v for k, v in doc.items() if k not in _SYSTEM_FIELDS}
        record.pop("id", None)
        if "recordId" in record:
            record["id"] = record.pop("recordId")
        return record

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.container.read_item(item=_doc_id(sk), partition_key=pk)
        except exceptions.CosmosResourceNotFoundError:
            logging.debug(f"Item not found: {pk}/{sk}")
            return None
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"reading item '{pk}/{sk}'")
            raise
        return self._from_document(doc)

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def put_if_absent(self, record: Dict[str, Any]) -> bool:
        try:
            self.container.create_item(body=self._to_document(record))
        except exceptions.CosmosResourceExistsError:
            logging.info(f"Item '{record['pk']}/{record['sk']}' already exists - create skipped")
            return False
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"creating item '{record['pk']}/{record['sk']}'")
            raise
        return True

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def put(self, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            doc = self.container.upsert_item(body=self._to_document(record))
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"upserting item '{record['pk']}/{record['sk']}'")
            raise
        return self._from_document(doc)

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def update_if_version(
        self,
        pk: str,
        sk: str,
        changes: Dict[str, Any],
        expected_version: int,
    ) -> Dict[str, Any]:
        """
        Compare-and-swap on the record's version, guarded by the item etag

        Raises:
            NotFoundError: If the item does not exist
            ConflictError: If the version or etag moved underneath us
            RetryableCosmosError: If operation should be retried
        """
        doc_id = _doc_id(sk)
        try:
            current = self.container.read_item(item=doc_id, partition_key=pk)
        except exceptions.CosmosResourceNotFoundError:
            raise NotFoundError("Record", f"{pk}/{sk}")
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"reading item '{pk}/{sk}'")
            raise

        stored_version = current.get("version")
        if stored_version != expected_version:
            raise ConflictError(
                f"Version mismatch for '{pk}/{sk}': expected {expected_version}, found {stored_version}",
                code="VERSION_CONFLICT",
                details={"expectedVersion": expected_version, "currentVersion": stored_version},
            )

        etag = current.get("_etag")
        body = {k: v for k, v in current.items() if k not in _SYSTEM_FIELDS}
        body.update(changes)
        body["version"] = expected_version + 1
        try:
            doc = self.container.replace_item(
                item=doc_id,
                body=body,
                etag=etag,
                match_condition=MatchConditions.IfNotModified,
            )
        except exceptions.CosmosAccessConditionFailedError:
            raise ConflictError(
                f"Concurrent update detected for '{pk}/{sk}'",
                code="VERSION_CONFLICT",
                details={"expectedVersion": expected_version},
            )
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"replacing item '{pk}/{sk}'")
            raise
        return self._from_document(doc)

    def batch_write(self, records: List[Dict[str, Any]]) -> int:
        """
        Upsert records as transactional batches, one partition at a time

        Args:
            records: Records to write; each batch holds at most BATCH_WRITE_LIMIT items

        Returns:
            Number of records written
        """
        if not records:
            return 0

        start_time = time.time()
        by_partition: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for record in records:
            by_partition.setdefault(record["pk"], []).append(self._to_document(record))

        written = 0
        for pk, docs in by_partition.items():
            for i in range(0, len(docs), BATCH_WRITE_LIMIT):
                chunk = docs[i:i + BATCH_WRITE_LIMIT]
                self._execute_batch(pk, chunk)
                written += len(chunk)

        logging.info(
            f"Batch write completed: {written} items processed in {time.time() - start_time:.2f}s"
        )
        return written

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def _execute_batch(self, pk: str, docs: List[Dict[str, Any]]) -> None:
        operations = [("upsert", (doc,)) for doc in docs]
        try:
            self.container.execute_item_batch(batch_operations=operations, partition_key=pk)
        except exceptions.CosmosBatchOperationError as e:
            logging.error(f"Batch operation failed for partition '{pk}' at index {e.error_index}: {e}")
            raise
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"writing batch for partition '{pk}'")
            raise

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def query(self, pk: str, sk_prefix: str = "") -> List[Dict[str, Any]]:
        try:
            items = list(self.container.query_items(
                query="SELECT * FROM c WHERE c.pk = @pk AND STARTSWITH(c.sk, @prefix)",
                parameters=[
                    {"name": "@pk", "value": pk},
                    {"name": "@prefix", "value": sk_prefix},
                ],
                partition_key=pk,
            ))
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"querying partition '{pk}'")
            raise
        return sorted((self._from_document(i) for i in items), key=lambda r: r["sk"])

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def query_by_tenant(self, tenant_id: str, sk_prefix: str = "") -> List[Dict[str, Any]]:
        try:
            items = list(self.container.query_items(
                query="SELECT * FROM c WHERE c.tenantId = @tenantId AND STARTSWITH(c.sk, @prefix)",
                parameters=[
                    {"name": "@tenantId", "value": tenant_id},
                    {"name": "@prefix", "value": sk_prefix},
                ],
                enable_cross_partition_query=True,
            ))
        except exceptions.CosmosHttpResponseError as e:
            _raise_if_retryable(e, f"querying tenant '{tenant_id}'")
            raise
        return sorted((self._from_document(i) for i in items), key=lambda r: (r["pk"], r["sk"]))


def _container_from_env() -> ContainerProxy:
    connection_string = os.environ.get("COSMOS_DB_CONNECTION_STRING")
    database_name = os.environ.get("COSMOS_DB_NAME")
    if not connection_string or not database_name:
        raise ConfigurationError("Missing Cosmos DB connection string or database name")
    container_name = os.environ.get("COSMOS_DB_CONTAINER_CAMPAIGNS") or "campaigns"
    client = _cosmos_client(connection_string)
    return client.get_database_client(database_name).get_container_client(container_name)


# Singleton client with caching
@lru_cache(maxsize=1)
def _cosmos_client(connection_string: str) -> CosmosClient:
    return CosmosClient.from_connection_string(
        connection_string,
        retry_total=CosmosRecordStore.MAX_RETRIES
    )
