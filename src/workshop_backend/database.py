"""
Record stores for workshop documents.

One record per workshop, stored as a JSON-compatible document keyed by
``id``. Two backends share one interface:

- ``DynamoRecordStore``: a DynamoDB table accessed through a boto3 client.
- ``SQLiteRecordStore``: a local SQLite file, for development and tests.

``append_to_list`` is the only operation that needs cross-request ordering.
Both backends implement it as a single atomic update: DynamoDB with a
conditional ``list_append(if_not_exists(...))`` expression, SQLite inside a
``BEGIN IMMEDIATE`` transaction. Neither creates a record that does not exist.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .exceptions import StorageError
from .utils import ensure_directory, utc_now_iso

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# Default database path
DEFAULT_DB_PATH = Path("data/workshops.db")


class RecordStore(Protocol):
    backend: str

    def get(self, record_id: str) -> Optional[Record]:
        ...

    def put(self, record: Record) -> None:
        ...

    def append_to_list(self, record_id: str, field: str, element: Record) -> Optional[Record]:
        ...

    def delete(self, record_id: str) -> bool:
        ...

    def scan_projected(self, fields: Sequence[str]) -> List[Record]:
        ...

    def ping(self) -> str:
        ...


def _project(record: Record, fields: Sequence[str]) -> Record:
    return {name: record[name] for name in fields if name in record}


class SQLiteRecordStore:
    """
    SQLite document store.

    Thread-safe: every call opens its own connection; WAL mode and the busy
    timeout serialize concurrent writers.
    """

    backend = "sqlite"

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        ensure_directory(self.db_path.parent)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as exc:
            raise StorageError("Failed to open record store", {"path": str(self.db_path), "error": str(exc)}) from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error(f"Record store error: {exc}")
            raise StorageError("Record store operation failed", {"error": str(exc)}) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workshops (
                    id TEXT PRIMARY KEY,
                    created_at TEXT,
                    document TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_workshops_created_at
                ON workshops(created_at)
            """)

    def get(self, record_id: str) -> Optional[Record]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM workshops WHERE id = ?", (record_id,)
            ).fetchone()
            if not row:
                return None
            return json.loads(row["document"])

    def put(self, record: Record) -> None:
        """Insert or overwrite the full record."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO workshops (id, created_at, document) VALUES (?, ?, ?)",
                (record["id"], record.get("createdAt"), json.dumps(record)),
            )

    def append_to_list(self, record_id: str, field: str, element: Record) -> Optional[Record]:
        """
        Append ``element`` to the list ``field``, creating the list if absent.

        Also stamps ``updatedAt``. Returns the updated record, or None when
        the record does not exist.
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT document FROM workshops WHERE id = ?", (record_id,)
            ).fetchone()
            if not row:
                return None

            record = json.loads(row["document"])
            existing = record.get(field)
            record[field] = [*existing, element] if isinstance(existing, list) else [element]
            record["updatedAt"] = utc_now_iso()

            conn.execute(
                "UPDATE workshops SET document = ? WHERE id = ?",
                (json.dumps(record), record_id),
            )
            return record

    def delete(self, record_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM workshops WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def scan_projected(self, fields: Sequence[str]) -> List[Record]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT document FROM workshops ORDER BY created_at"
            ).fetchall()
            return [_project(json.loads(row["document"]), fields) for row in rows]

    def ping(self) -> str:
        with self._get_connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM workshops").fetchone()[0]
        return f"SQLite database {self.db_path} reachable ({count} records)"


class DynamoRecordStore:
    """
    DynamoDB document store; records are items keyed by ``id``.

    Uses a low-level client, which can be shared across request threads, and
    converts items with boto3's type (de)serializers.
    """

    backend = "dynamodb"

    def __init__(
        self,
        table_name: str,
        region: Optional[str] = None,
        client=None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
    ) -> None:
        self.table_name = table_name
        if client is None:
            client = boto3.client(
                "dynamodb",
                region_name=region,
                config=Config(connect_timeout=connect_timeout, read_timeout=read_timeout, retries={"max_attempts": 0}),
            )
        self.client = client
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def _serialize(self, item: Record) -> Dict[str, Any]:
        return {key: self._serializer.serialize(value) for key, value in item.items()}

    def _deserialize(self, item: Dict[str, Any]) -> Record:
        return {key: self._deserializer.deserialize(value) for key, value in item.items()}

    def _key(self, record_id: str) -> Dict[str, Any]:
        return {"id": {"S": record_id}}

    def _fail(self, action: str, exc: Exception, **context: Any) -> StorageError:
        details: Dict[str, Any] = {"table": self.table_name, **context}
        if isinstance(exc, ClientError):
            details["code"] = exc.response.get("Error", {}).get("Code", "")
        details["error"] = str(exc)
        logger.error(f"DynamoDB {action} failed: {exc}")
        return StorageError(f"Failed to {action} record", details)

    def get(self, record_id: str) -> Optional[Record]:
        try:
            response = self.client.get_item(TableName=self.table_name, Key=self._key(record_id))
        except (BotoCoreError, ClientError) as exc:
            raise self._fail("read", exc, id=record_id) from exc
        item = response.get("Item")
        return self._deserialize(item) if item else None

    def put(self, record: Record) -> None:
        try:
            self.client.put_item(TableName=self.table_name, Item=self._serialize(record))
        except (BotoCoreError, ClientError) as exc:
            raise self._fail("write", exc, id=record.get("id")) from exc

    def append_to_list(self, record_id: str, field: str, element: Record) -> Optional[Record]:
        try:
            response = self.client.update_item(
                TableName=self.table_name,
                Key=self._key(record_id),
                UpdateExpression="SET #list = list_append(if_not_exists(#list, :empty), :items), #updated = :updated",
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames={"#list": field, "#updated": "updatedAt", "#pk": "id"},
                ExpressionAttributeValues=self._serialize(
                    {":empty": [], ":items": [element], ":updated": utc_now_iso()}
                ),
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return None
            raise self._fail("update", exc, id=record_id) from exc
        except BotoCoreError as exc:
            raise self._fail("update", exc, id=record_id) from exc
        return self._deserialize(response.get("Attributes", {}))

    def delete(self, record_id: str) -> bool:
        try:
            response = self.client.delete_item(
                TableName=self.table_name, Key=self._key(record_id), ReturnValues="ALL_OLD"
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._fail("delete", exc, id=record_id) from exc
        return bool(response.get("Attributes"))

    def scan_projected(self, fields: Sequence[str]) -> List[Record]:
        """Full-table scan returning only ``fields``; follows LastEvaluatedKey across pages."""
        names = {f"#f{index}": name for index, name in enumerate(fields)}
        params: Dict[str, Any] = {
            "TableName": self.table_name,
            "ProjectionExpression": ", ".join(names),
            "ExpressionAttributeNames": names,
        }
        items: List[Record] = []
        try:
            while True:
                response = self.client.scan(**params)
                items.extend(self._deserialize(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                params["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as exc:
            raise self._fail("scan", exc) from exc
        return items

    def ping(self) -> str:
        try:
            self.client.describe_table(TableName=self.table_name)
        except (BotoCoreError, ClientError) as exc:
            raise self._fail("describe", exc) from exc
        return f"Table {self.table_name} reachable"


def build_record_store(settings: DictConfig) -> RecordStore:
    storage = settings.storage
    if storage.record_backend == "sqlite":
        return SQLiteRecordStore(Path(storage.sqlite_path))
    return DynamoRecordStore(
        table_name=storage.table,
        region=storage.region,
        connect_timeout=storage.connect_timeout,
        read_timeout=storage.read_timeout,
    )
