from http import HTTPStatus
from typing import Any, Optional

import aiohttp
from loguru import logger

SERVICE_UNAVAILABLE_MESSAGE = (
    "The server is temporarily unable to service your request due to maintenance "
    "downtime or capacity problems. Please try again later."
)


class MelindaApiError(Exception):
    """Failure carrying an HTTP status code and an optional message payload"""

    def __init__(self, status: int, payload: Optional[Any] = None):
        self.status = int(status)
        self.payload = payload
        super().__init__(self.status, payload)

    def __str__(self) -> str:
        if self.payload is None:
            return f"Melinda API error {self.status}"
        return f"Melinda API error {self.status}: {self.payload}"


class MelindaTransportError(MelindaApiError):
    """Connection, timeout or response parsing failure, reported as an internal error"""


class PollingAbortedError(MelindaApiError):
    """Raised when the backend refuses a bulk state poll in a way that retrying cannot fix"""


async def check_status(response: aiohttp.ClientResponse) -> None:
    """Translates the known failure statuses into descriptive MelindaApiErrors"""
    status = response.status

    if status == HTTPStatus.BAD_REQUEST:
        logger.error('Got "BAD_REQUEST" (400) response from melinda-rest-api.')
        try:
            data = await response.json(content_type=None)
        except ValueError:
            data = None
        if isinstance(data, dict) and data:
            failed_params = data.get("failedParams")
            if isinstance(failed_params, list):
                failed_params = ",".join(str(param) for param in failed_params)
            message = f"{data.get('message')}: {failed_params}"
            logger.error(message)
            raise MelindaApiError(HTTPStatus.BAD_REQUEST, message)
        raise MelindaApiError(HTTPStatus.BAD_REQUEST)

    if status in (
        HTTPStatus.UNAUTHORIZED,
        HTTPStatus.FORBIDDEN,
        HTTPStatus.NOT_FOUND,
    ):
        phrase = HTTPStatus(status).name
        logger.error(f'Got "{phrase}" ({status}) response from melinda-rest-api.')
        raise MelindaApiError(status)

    if status == HTTPStatus.SERVICE_UNAVAILABLE:
        logger.error(
            'Got "SERVICE_UNAVAILABLE" (503) response from melinda-rest-api.'
        )
        raise MelindaApiError(
            HTTPStatus.SERVICE_UNAVAILABLE, SERVICE_UNAVAILABLE_MESSAGE
        )
