import base64

import pytest
from melinda_rest_api_client.executor import (
    RequestExecutor,
    build_query,
    generate_authorization_header,
    remove_undefined_values,
)
from melinda_rest_api_client.models import (
    BulkState,
    ClientConfig,
    MarcRecord,
    QueueItemState,
)


@pytest.fixture
def executor() -> RequestExecutor:
    return RequestExecutor(
        ClientConfig(base_url="http://foo.bar/", username="foo", password="bar")
    )


def test_undefined_values_are_dropped():
    assert build_query({"a": 1, "b": None, "c": 2}) == "a=1&c=2"
    assert remove_undefined_values({"a": None}) is None
    assert remove_undefined_values({}) is None
    assert remove_undefined_values({"a": 0, "b": ""}) == {"a": 0, "b": ""}


def test_query_value_encoding():
    query = build_query(
        {
            "noop": True,
            "merge": False,
            "status": QueueItemState.ABORT,
            "creationTime": ["2024-01-01", "2024-02-01"],
            "pRejectFile": "reject file.rej",
        }
    )
    assert query == (
        "noop=1&merge=0&status=ABORT"
        "&creationTime=2024-01-01%2C2024-02-01&pRejectFile=reject+file.rej"
    )


def test_build_url(executor):
    assert executor.build_url("") == "http://foo.bar/"
    assert executor.build_url("bulk/", {"skip": None}) == "http://foo.bar/bulk/"
    assert (
        executor.build_url("bulk/state/abc", {"status": "DONE"})
        == "http://foo.bar/bulk/state/abc?status=DONE"
    )


def test_authorization_header(executor):
    expected = "Basic " + base64.b64encode(b"foo:bar").decode()
    assert generate_authorization_header("foo", "bar") == expected
    assert executor.authorization == expected


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("MELINDA_API_URL", "http://melinda.example/api")
    monkeypatch.setenv("MELINDA_API_USERNAME", "user")
    monkeypatch.setenv("MELINDA_API_PASSWORD", "secret")
    monkeypatch.setenv("MELINDA_API_CATALOGER", "LOAD")
    monkeypatch.delenv("MELINDA_API_USER_AGENT", raising=False)

    config = ClientConfig.from_env()

    assert config.base_url == "http://melinda.example/api"
    assert config.cataloger == "LOAD"
    assert config.user_agent == "Melinda commons API client / Python"


def test_bulk_state_unknown_state_is_kept():
    state = BulkState.model_validate(
        {"correlationId": "abc", "queueItemState": "SOMETHING_NEW", "modificationTime": 1}
    )
    assert state.queue_item_state == "SOMETHING_NEW"
    assert not state.is_terminal
    assert state.records_handled is None


def test_bulk_state_records_handled():
    state = BulkState.model_validate(
        {"queueItemState": "IN_PROCESS", "records": [{"recordId": "1"}, {"recordId": "2"}]}
    )
    assert state.queue_item_state is QueueItemState.IN_PROCESS
    assert state.records_handled == 2


def test_marc_record_from_json_string():
    record = MarcRecord.parse('{"leader": "abc", "fields": [{"tag": "001", "value": "1"}]}')
    assert record.leader == "abc"
    assert record.fields == [{"tag": "001", "value": "1"}]


def test_bulk_state_name_is_plain_value():
    known = BulkState.model_validate({"queueItemState": "IN_QUEUE"})
    unknown = BulkState.model_validate({"queueItemState": "SOMETHING_NEW"})

    assert known.state_name == "IN_QUEUE"
    assert f"{known.state_name}" == "IN_QUEUE"
    assert unknown.state_name == "SOMETHING_NEW"
    assert BulkState().state_name is None
