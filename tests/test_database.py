"""
Tests for the record stores.

The SQLite store runs against a temp file; the DynamoDB store runs against a
botocore Stubber so the exact low-level requests can be checked.
"""

import boto3
import pytest
from botocore.stub import ANY, Stubber

from workshop_backend.database import DynamoRecordStore, SQLiteRecordStore
from workshop_backend.exceptions import StorageError


def _record(record_id="w1", **extra):
    record = {"id": record_id, "name": "Rockets", "description": "Launch", "createdAt": "2026-01-01T00:00:00+00:00"}
    record.update(extra)
    return record


class TestSQLiteRecordStore:
    """SQLite store against a per-test database file."""

    def test_put_and_get(self, record_store):
        """A stored record reads back unchanged."""
        record_store.put(_record(slides=[]))
        assert record_store.get("w1") == _record(slides=[])

    def test_get_missing_returns_none(self, record_store):
        """Unknown ids read as None."""
        assert record_store.get("missing") is None

    def test_put_overwrites(self, record_store):
        """Put replaces the whole record."""
        record_store.put(_record())
        record_store.put(_record(name="Gliders"))
        assert record_store.get("w1")["name"] == "Gliders"

    def test_append_creates_list_when_absent(self, record_store):
        """Appending to a record without the list starts one and stamps updatedAt."""
        record_store.put(_record())

        updated = record_store.append_to_list("w1", "slides", {"id": "s1"})

        assert updated["slides"] == [{"id": "s1"}]
        assert updated["updatedAt"]
        assert record_store.get("w1") == updated

    def test_append_extends_existing_list(self, record_store):
        """New elements go to the end of the existing list."""
        record_store.put(_record(slides=[{"id": "s1"}]))

        updated = record_store.append_to_list("w1", "slides", {"id": "s2"})

        assert [slide["id"] for slide in updated["slides"]] == ["s1", "s2"]

    def test_append_to_missing_record_creates_nothing(self, record_store):
        """Appending to a missing record returns None and does not create it."""
        assert record_store.append_to_list("missing", "slides", {"id": "s1"}) is None
        assert record_store.get("missing") is None

    def test_delete(self, record_store):
        """Delete reports whether a record existed."""
        record_store.put(_record())
        assert record_store.delete("w1") is True
        assert record_store.delete("w1") is False
        assert record_store.get("w1") is None

    def test_scan_projects_fields(self, record_store):
        """Scans return only the requested fields, oldest first."""
        record_store.put(_record("w1", slides=[{"id": "s1"}]))
        record_store.put(_record("w2", createdAt="2026-02-01T00:00:00+00:00"))

        items = record_store.scan_projected(["id", "name", "duration"])

        assert items == [{"id": "w1", "name": "Rockets"}, {"id": "w2", "name": "Rockets"}]

    def test_ping(self, record_store):
        """Ping reports a reachable database."""
        assert "reachable" in record_store.ping()

    def test_unwritable_path_raises_storage_error(self, tmp_path):
        """A database path under a regular file cannot be opened."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises((StorageError, OSError)):
            SQLiteRecordStore(blocker / "records.db")


class TestDynamoRecordStore:
    """DynamoDB store against a stubbed low-level client."""

    @pytest.fixture
    def client(self):
        return boto3.client("dynamodb", region_name="us-east-1")

    @pytest.fixture
    def stubber(self, client):
        with Stubber(client) as stub:
            yield stub
            stub.assert_no_pending_responses()

    @pytest.fixture
    def store(self, client):
        return DynamoRecordStore("Workshops", client=client)

    def test_append_is_a_single_conditional_update(self, store, stubber):
        """One conditional update_item call, with no read beforehand."""
        stubber.add_response(
            "update_item",
            {"Attributes": {"id": {"S": "w1"}, "slides": {"L": [{"M": {"id": {"S": "s1"}}}]}}},
            {
                "TableName": "Workshops",
                "Key": {"id": {"S": "w1"}},
                "UpdateExpression": "SET #list = list_append(if_not_exists(#list, :empty), :items), #updated = :updated",
                "ConditionExpression": "attribute_exists(#pk)",
                "ExpressionAttributeNames": {"#list": "slides", "#updated": "updatedAt", "#pk": "id"},
                "ExpressionAttributeValues": {
                    ":empty": {"L": []},
                    ":items": {"L": [{"M": {"id": {"S": "s1"}}}]},
                    ":updated": ANY,
                },
                "ReturnValues": "ALL_NEW",
            },
        )

        updated = store.append_to_list("w1", "slides", {"id": "s1"})

        assert updated == {"id": "w1", "slides": [{"id": "s1"}]}

    def test_append_to_missing_record_returns_none(self, store, stubber):
        """A failed attribute_exists condition means the record is gone."""
        stubber.add_client_error(
            "update_item", service_error_code="ConditionalCheckFailedException", http_status_code=400
        )
        assert store.append_to_list("missing", "slides", {"id": "s1"}) is None

    def test_append_backend_error_raises(self, store, stubber):
        """Other update failures surface as StorageError with the error code."""
        stubber.add_client_error(
            "update_item", service_error_code="ProvisionedThroughputExceededException", http_status_code=400
        )

        with pytest.raises(StorageError) as excinfo:
            store.append_to_list("w1", "slides", {"id": "s1"})
        assert excinfo.value.details["code"] == "ProvisionedThroughputExceededException"
        assert excinfo.value.details["table"] == "Workshops"

    def test_get(self, store, stubber):
        """Items come back as plain Python values; a missing item is None."""
        stubber.add_response(
            "get_item",
            {"Item": {"id": {"S": "w1"}, "name": {"S": "Rockets"}, "slides": {"L": []}}},
            {"TableName": "Workshops", "Key": {"id": {"S": "w1"}}},
        )
        stubber.add_response("get_item", {}, {"TableName": "Workshops", "Key": {"id": {"S": "missing"}}})

        assert store.get("w1") == {"id": "w1", "name": "Rockets", "slides": []}
        assert store.get("missing") is None

    def test_put_serializes_record(self, store, stubber):
        """Records are written in DynamoDB's typed attribute format."""
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": "Workshops",
                "Item": {
                    "id": {"S": "w1"},
                    "name": {"S": "Rockets"},
                    "description": {"S": "Launch"},
                    "createdAt": {"S": "2026-01-01T00:00:00+00:00"},
                    "coverImageUrl": {"NULL": True},
                    "slides": {"L": []},
                },
            },
        )
        store.put(_record(coverImageUrl=None, slides=[]))

    def test_put_error_raises(self, store, stubber):
        """A missing table surfaces as StorageError."""
        stubber.add_client_error("put_item", service_error_code="ResourceNotFoundException", http_status_code=400)
        with pytest.raises(StorageError):
            store.put(_record())

    def test_delete_reports_existence(self, store, stubber):
        """Delete returns whether an item was actually removed."""
        expected = {"TableName": "Workshops", "Key": {"id": {"S": "w1"}}, "ReturnValues": "ALL_OLD"}
        stubber.add_response("delete_item", {"Attributes": {"id": {"S": "w1"}}}, expected)
        stubber.add_response("delete_item", {}, expected)

        assert store.delete("w1") is True
        assert store.delete("w1") is False

    def test_scan_follows_pages_with_placeholders(self, store, stubber):
        """Projected scans use name placeholders and follow LastEvaluatedKey."""
        params = {
            "TableName": "Workshops",
            "ProjectionExpression": "#f0, #f1",
            "ExpressionAttributeNames": {"#f0": "id", "#f1": "name"},
        }
        stubber.add_response(
            "scan",
            {"Items": [{"id": {"S": "w1"}, "name": {"S": "A"}}], "LastEvaluatedKey": {"id": {"S": "w1"}}},
            params,
        )
        stubber.add_response(
            "scan",
            {"Items": [{"id": {"S": "w2"}, "name": {"S": "B"}}]},
            {**params, "ExclusiveStartKey": {"id": {"S": "w1"}}},
        )

        items = store.scan_projected(["id", "name"])

        assert items == [{"id": "w1", "name": "A"}, {"id": "w2", "name": "B"}]

    def test_ping_describes_table(self, store, stubber):
        """Ping is a describe_table call on the configured table."""
        stubber.add_response("describe_table", {"Table": {"TableName": "Workshops"}}, {"TableName": "Workshops"})
        assert "Workshops" in store.ping()

    def test_ping_missing_table(self, store, stubber):
        """An unreachable table raises StorageError."""
        stubber.add_client_error("describe_table", service_error_code="ResourceNotFoundException", http_status_code=400)
        with pytest.raises(StorageError):
            store.ping()

    def test_builds_low_level_client(self):
        """Without an injected client the store builds a boto3 DynamoDB client, not a resource."""
        store = DynamoRecordStore("Workshops", region="us-east-1")
        assert store.client.meta.service_model.service_name == "dynamodb"
        assert store.client.meta.region_name == "us-east-1"
