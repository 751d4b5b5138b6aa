"""Async client for the Melinda REST API."""

from melinda_rest_api_client.errors import (
    MelindaApiError,
    MelindaTransportError,
    PollingAbortedError,
)
from melinda_rest_api_client.log_client import (
    MelindaLogClient,
    create_melinda_api_log_client,
)
from melinda_rest_api_client.models import (
    BulkState,
    ClientConfig,
    MarcRecord,
    PollingConfig,
    QueueItemState,
)
from melinda_rest_api_client.poller import BulkPoller, poll_melinda_rest_api
from melinda_rest_api_client.record_client import (
    MelindaRecordClient,
    create_melinda_api_record_client,
)

__all__ = [
    "BulkPoller",
    "BulkState",
    "ClientConfig",
    "MarcRecord",
    "MelindaApiError",
    "MelindaLogClient",
    "MelindaRecordClient",
    "MelindaTransportError",
    "PollingAbortedError",
    "PollingConfig",
    "QueueItemState",
    "create_melinda_api_log_client",
    "create_melinda_api_record_client",
    "poll_melinda_rest_api",
]
