from contextlib import asynccontextmanager
from enum import Enum
from http import HTTPStatus
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import quote, urlencode

import aiohttp
from loguru import logger
from melinda_rest_api_client.errors import (
    MelindaApiError,
    MelindaTransportError,
    check_status,
)
from melinda_rest_api_client.models import ClientConfig, RequestDescriptor

ResponseHandler = Callable[[RequestDescriptor, aiohttp.ClientResponse], Awaitable[Any]]


def generate_authorization_header(username: str, password: str) -> str:
    return aiohttp.BasicAuth(username, password).encode()


def remove_undefined_values(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drops keys whose value is None, returns None when nothing is left"""
    if not params:
        return None
    cleaned = {key: value for key, value in params.items() if value is not None}
    return cleaned or None


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple)):
        return ",".join(_encode_value(item) for item in value)
    return str(value)


def build_query(params: Optional[Mapping[str, Any]]) -> str:
    cleaned = remove_undefined_values(params)
    if cleaned is None:
        return ""
    return urlencode([(key, _encode_value(value)) for key, value in cleaned.items()])


def quote_path_segment(segment: str) -> str:
    return quote(str(segment), safe="")


class RequestExecutor:
    def __init__(self, config: ClientConfig):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.authorization = generate_authorization_header(
            config.username, config.password
        )
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        """Yields the shared session if one is open, otherwise a short-lived one"""
        if self._session is not None and not self._session.closed:
            yield self._session
            return

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.timeout)
        ) as session:
            yield session

    def build_url(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        query = build_query(params)
        url = f"{self.base_url}/{path}"
        return f"{url}?{query}" if query else url

    def _headers(self, content_type: str) -> Dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Content-Type": content_type,
            "Authorization": self.authorization,
            "Accept": "application/json",
        }

    async def execute(
        self, request: RequestDescriptor, handle_response: ResponseHandler
    ) -> Any:
        """Sends one request and passes the status-checked response to handle_response"""
        url = self.build_url(request.path, request.params)
        self.logger.debug(f"Connection URL {request.method.upper()} {url}")

        try:
            async with self._session_scope() as session:
                async with session.request(
                    request.method.upper(),
                    url,
                    headers=self._headers(request.content_type),
                    data=request.body,
                ) as response:
                    self.logger.debug(
                        f"{request.method.upper()}, path: {request.path}, "
                        f"params: {request.params}, status: {response.status}"
                    )
                    await check_status(response)
                    return await handle_response(request, response)
        except MelindaApiError:
            raise
        except Exception as e:
            self.logger.error(f"Api-client error at {url}: {e!r}")
            raise MelindaTransportError(
                HTTPStatus.INTERNAL_SERVER_ERROR, "Unexpected internal error"
            ) from e
