from http import HTTPStatus
from typing import Any, Mapping, Optional

import aiohttp
from loguru import logger
from melinda_rest_api_client.errors import MelindaApiError
from melinda_rest_api_client.executor import RequestExecutor, quote_path_segment
from melinda_rest_api_client.models import ClientConfig, RequestDescriptor


class MelindaLogClient:
    def __init__(self, config: ClientConfig):
        self.config = config
        self.executor = RequestExecutor(config)
        self.logger = logger

    async def __aenter__(self) -> "MelindaLogClient":
        await self.executor.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.executor.close()

    async def get_catalogers(self) -> Any:
        """Lists the catalogers who have created logs"""
        return await self._do_request(
            RequestDescriptor(method="get", path="logs/catalogers")
        )

    async def get_log(self, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Searches log items

        params: correlationId, logItemType, blobSequence, standardIdentifiers,
        databaseId, sourceIds, skip, limit
        """
        return await self._do_request(
            RequestDescriptor(method="get", path="logs", params=_copy(params))
        )

    async def protect_log(
        self, correlation_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        """Toggles the protect flag of the logs of a correlation, optionally one blobSequence only"""
        return await self._do_request(
            RequestDescriptor(
                method="put",
                path=f"logs/{quote_path_segment(correlation_id)}",
                params=_copy(params),
            )
        )

    async def remove_log(
        self, correlation_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        """Removes the logs of a correlation, params: force (0|1)"""
        return await self._do_request(
            RequestDescriptor(
                method="delete",
                path=f"logs/{quote_path_segment(correlation_id)}",
                params=_copy(params),
            )
        )

    async def get_logs_list(self, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Lists logs

        params: logItemTypes, catalogers (comma separated or lists),
        dateBefore, dateAfter ('YYYY-MM-DD'), expanded (0|1)
        """
        return await self._do_request(
            RequestDescriptor(method="get", path="logs/list", params=_copy(params))
        )

    async def _do_request(self, request: RequestDescriptor) -> Any:
        return await self.executor.execute(request, self._handle_response)

    async def _handle_response(
        self, request: RequestDescriptor, response: aiohttp.ClientResponse
    ) -> Any:
        if response.status == HTTPStatus.OK:
            result = await response.json(content_type=None)
            self.logger.debug(f"Result: {result}")
            return result

        self.logger.debug(f"Invalid response status {response.status}")
        raise MelindaApiError(response.status)


def _copy(params: Optional[Mapping[str, Any]]) -> Optional[dict]:
    return dict(params) if params else None


def create_melinda_api_log_client(
    base_url: str,
    username: str,
    password: str,
    user_agent: Optional[str] = None,
) -> MelindaLogClient:
    config = ClientConfig(
        base_url=base_url,
        username=username,
        password=password,
        **({"user_agent": user_agent} if user_agent else {}),
    )
    return MelindaLogClient(config)
