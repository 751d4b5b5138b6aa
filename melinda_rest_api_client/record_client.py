import json
from http import HTTPStatus
from typing import Any, Dict, List, Mapping, Optional, Union

import aiohttp
from loguru import logger
from melinda_rest_api_client.errors import MelindaApiError
from melinda_rest_api_client.executor import RequestExecutor, quote_path_segment
from melinda_rest_api_client.models import (
    BulkState,
    ClientConfig,
    CreateRecordResult,
    MarcRecord,
    QueueItemState,
    ReadRecordResult,
    RequestDescriptor,
)

Record = Union[MarcRecord, Dict[str, Any]]


def _serialize_record(record: Record) -> str:
    if isinstance(record, MarcRecord):
        return record.model_dump_json()
    return json.dumps(record)


class MelindaRecordClient:
    """Record and bulk operations of the Melinda REST API

    Can be used as an async context manager to share one HTTP session across calls.
    """

    def __init__(self, config: ClientConfig):
        self.config = config
        self.executor = RequestExecutor(config)
        self.logger = logger

    async def __aenter__(self) -> "MelindaRecordClient":
        await self.executor.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.executor.close()

    def _prio_params(self, defaults: Dict[str, Any], params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        merged = dict(defaults)
        if self.config.cataloger:
            merged["cataloger"] = self.config.cataloger
        merged.update(params or {})
        return merged

    def _bulk_params(self, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        if self.config.cataloger:
            merged["pCatalogerIn"] = self.config.cataloger
        merged.update(params or {})
        return merged

    async def read(self, record_id: str) -> ReadRecordResult:
        self.logger.debug(f"GET record {record_id}")
        return await self._do_request(
            RequestDescriptor(method="get", path=quote_path_segment(record_id))
        )

    async def create(
        self, record: Record, params: Optional[Mapping[str, Any]] = None
    ) -> Union[CreateRecordResult, Any]:
        """Sends a new record to be saved in Melinda

        params: noop, unique, merge, cataloger, skipLowValidation (0|1 flags)
        """
        self.logger.debug("POST create prio")
        return await self._do_request(
            RequestDescriptor(
                method="post",
                path="",
                params=self._prio_params({"noop": 0, "unique": 0, "merge": 0}, params),
                body=_serialize_record(record),
            )
        )

    async def update(
        self, record: Record, record_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        self.logger.debug(f"POST update prio {record_id}")
        return await self._do_request(
            RequestDescriptor(
                method="post",
                path=quote_path_segment(record_id),
                params=self._prio_params({"noop": 0}, params),
                body=_serialize_record(record),
            )
        )

    async def restore(
        self, record: Record, record_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        self.logger.debug(f"POST restore prio {record_id}")
        return await self._do_request(
            RequestDescriptor(
                method="post",
                path=f"fix/{quote_path_segment(record_id)}",
                params=self._prio_params({"noop": 0}, params),
                body=_serialize_record(record),
            )
        )

    async def create_bulk(
        self,
        stream: Any,
        stream_content_type: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Uploads a whole file of records as a single bulk job

        params: pOldNew, pActiveLibrary, pCatalogerIn, pRejectFile, pLogFile,
        noop, unique, merge, validate, failOnError, skipNoChangeUpdates
        """
        self.logger.debug("POST bulk stream")
        return await self._do_request(
            RequestDescriptor(
                method="post",
                path="bulk/",
                params=self._bulk_params(params),
                body=stream,
                content_type=stream_content_type,
            )
        )

    async def create_bulk_no_stream(
        self, content_type: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        """Creates a bulk job waiting for records sent with send_record_to_bulk"""
        self.logger.debug("POST bulk no stream")
        merged = self._bulk_params(params)
        merged["noStream"] = 1
        return await self._do_request(
            RequestDescriptor(
                method="post", path="bulk/", params=merged, content_type=content_type
            )
        )

    async def set_bulk_status(
        self, correlation_id: str, status: Union[QueueItemState, str]
    ) -> Any:
        self.logger.debug(f"PUT bulk status {correlation_id}")
        return await self._do_request(
            RequestDescriptor(
                method="put",
                path=f"bulk/state/{quote_path_segment(correlation_id)}",
                params={"status": status},
            )
        )

    async def send_record_to_bulk(
        self, record: Record, correlation_id: str, content_type: str = "application/json"
    ) -> Any:
        self.logger.debug(f"POST record to bulk {correlation_id}")
        return await self._do_request(
            RequestDescriptor(
                method="post",
                path=f"bulk/record/{quote_path_segment(correlation_id)}",
                body=_serialize_record(record),
                content_type=content_type,
            )
        )

    async def read_bulk(self, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Queries bulk queue items

        params: correlationId, queueItemState, creationTime, modificationTime, skip, limit
        """
        self.logger.debug("GET bulk metadata")
        return await self._do_request(
            RequestDescriptor(
                method="get", path="bulk/", params=dict(params) if params else None
            )
        )

    async def get_bulk_state(self, correlation_id: str) -> BulkState:
        self.logger.debug(f"GET bulk state {correlation_id}")
        data = await self._do_request(
            RequestDescriptor(
                method="get", path=f"bulk/state/{quote_path_segment(correlation_id)}"
            )
        )
        return BulkState.model_validate(data)

    async def _do_request(self, request: RequestDescriptor) -> Any:
        return await self.executor.execute(request, self._handle_response)

    async def _handle_response(
        self, request: RequestDescriptor, response: aiohttp.ClientResponse
    ) -> Any:
        is_bulk = request.path.startswith("bulk/")
        status = response.status

        if status in (HTTPStatus.OK, HTTPStatus.CREATED):
            body = await response.text()
            if request.method == "post" and request.path == "" and not body.strip():
                record_id = response.headers.get("Record-ID") or None
                self.logger.debug(f"Created record {record_id}")
                return CreateRecordResult(record_id=record_id)

            data = json.loads(body)
            self.logger.debug(f"Response data: {data}")

            if is_bulk:
                if request.method == "post" and isinstance(data, dict):
                    return data.get("value") or data
                return data

            if request.method == "get":
                return ReadRecordResult(record=MarcRecord.parse(data))

            return data

        if status in (HTTPStatus.ACCEPTED, HTTPStatus.CONFLICT):
            self.logger.debug(f"Handling {'bulk' if is_bulk else 'prio'} response {status}")
            return await response.json(content_type=None)

        self.logger.debug(f"Invalid response status {status}")
        raise MelindaApiError(status)


def create_melinda_api_record_client(
    base_url: str,
    username: str,
    password: str,
    cataloger: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> MelindaRecordClient:
    config = ClientConfig(
        base_url=base_url,
        username=username,
        password=password,
        cataloger=cataloger,
        **({"user_agent": user_agent} if user_agent else {}),
    )
    return MelindaRecordClient(config)
