import pytest
from melinda_rest_api_client.errors import MelindaApiError
from melinda_rest_api_client.log_client import (
    MelindaLogClient,
    create_melinda_api_log_client,
)

LOGS = [
    {"correlationId": "aaa", "logItemType": "MERGE_LOG", "cataloger": "IMP_A", "blobSequence": 1},
    {"correlationId": "aaa", "logItemType": "MATCH_LOG", "cataloger": "IMP_A", "blobSequence": 2},
    {"correlationId": "bbb", "logItemType": "MERGE_LOG", "cataloger": "IMP_B", "blobSequence": 1},
]


@pytest.fixture
def logs(server):
    server_instance, _ = server
    server_instance.logs = [dict(log) for log in LOGS]
    return server_instance


@pytest.mark.asyncio
async def test_get_catalogers(logs, config):
    assert await MelindaLogClient(config).get_catalogers() == ["IMP_A", "IMP_B"]
    assert logs.requests[-1]["path"] == "/logs/catalogers"


@pytest.mark.asyncio
async def test_get_log_filters(logs, config):
    result = await MelindaLogClient(config).get_log(
        {"correlationId": "aaa", "logItemType": "MATCH_LOG", "skip": None}
    )

    assert result == [LOGS[1]]
    assert logs.requests[-1]["query_string"] == "correlationId=aaa&logItemType=MATCH_LOG"


@pytest.mark.asyncio
async def test_get_logs_list(logs, config):
    async with MelindaLogClient(config) as client:
        correlation_ids = await client.get_logs_list(
            {"logItemTypes": ["MERGE_LOG"], "catalogers": "IMP_A,IMP_B"}
        )
        expanded = await client.get_logs_list({"catalogers": ["IMP_B"], "expanded": True})

    assert correlation_ids == ["aaa", "bbb"]
    assert expanded == [LOGS[2]]
    assert logs.requests[-1]["query"] == {"catalogers": "IMP_B", "expanded": "1"}


@pytest.mark.asyncio
async def test_protect_and_remove_log(logs, config):
    """Protected logs can be removed only by force."""
    client = MelindaLogClient(config)

    protected = await client.protect_log("bbb", {"blobSequence": 1})
    assert protected["payload"] == "Protected 1 log(s)"
    assert logs.requests[-1]["method"] == "PUT"

    with pytest.raises(MelindaApiError) as excinfo:
        await client.remove_log("bbb")
    assert excinfo.value.status == 403

    removed = await client.remove_log("bbb", {"force": 1})
    assert removed["payload"] == "Removed 1 log(s)"
    assert [log["correlationId"] for log in logs.logs] == ["aaa", "aaa"]


@pytest.mark.asyncio
async def test_missing_log(logs, config):
    with pytest.raises(MelindaApiError) as excinfo:
        await MelindaLogClient(config).remove_log("ccc")
    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_non_ok_status_is_failure(logs, config):
    """The log client only accepts 200 responses."""
    logs.forced_responses["/logs/catalogers"] = (202, {"status": "accepted"})

    client = create_melinda_api_log_client(
        base_url=config.base_url, username="foo", password="bar"
    )
    with pytest.raises(MelindaApiError) as excinfo:
        await client.get_catalogers()

    assert excinfo.value.status == 202
