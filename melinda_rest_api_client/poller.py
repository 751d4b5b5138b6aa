import asyncio
import inspect
import random
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

from loguru import logger
from melinda_rest_api_client.errors import (
    MelindaApiError,
    MelindaTransportError,
    PollingAbortedError,
)
from melinda_rest_api_client.models import BulkState, PollingConfig

# Internal error, no rights for bulk or cataloger, or wrong content type
ABORTING_STATUSES = frozenset(
    {
        HTTPStatus.INTERNAL_SERVER_ERROR,
        HTTPStatus.FORBIDDEN,
        HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
    }
)

_UNSET = object()
_RETRY = object()

class BulkStateSource(Protocol):
    async def get_bulk_state(self, correlation_id: str) -> BulkState:
        ...

    async def read_bulk(
        self, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        ...

class BulkPoller:
    def __init__(
        self,
        client: BulkStateSource,
        correlation_id: str,
        config: Optional[PollingConfig] = None,
        on_state_change: Optional[Callable[[BulkState], Any]] = None,
    ):
        self.client = client
        self.correlation_id = correlation_id
        self.config = config or PollingConfig()
        self.on_state_change = on_state_change
        self.logger = logger

    def _calculate_delay(self, attempt: int) -> float:
        """Delay before the next poll, grows with consecutive polls that saw no progress"""
        delay = min(
            self.config.interval * (self.config.backoff_factor**attempt),
            max(self.config.max_interval, self.config.interval),
        )

        if self.config.jitter:
            delay *= 1 + random.uniform(0, 0.2)
        return delay

    async def _wait_before_retry(self, attempt: int) -> None:
        delay = self._calculate_delay(attempt)
        self.logger.debug(
            f"Bulk {self.correlation_id} not finished, waiting {delay:.2f}s before next poll"
        )
        await asyncio.sleep(delay)

    async def _handle_state_change(self, state: BulkState) -> None:
        if self.on_state_change is None:
            return
        result = self.on_state_change(state)
        if inspect.isawaitable(result):
            await result

    async def _read_final_metadata(self) -> Any:
        return await self.client.read_bulk({"correlationId": self.correlation_id})

    def _first_metadata(self, results: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(results, list):
            raise MelindaApiError(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"Unexpected bulk metadata response for {self.correlation_id}: {results!r}",
            )
        return results[0] if results else None

    async def _attempt(self, operation: Awaitable[Any]) -> Any:
        """Awaits one backend call, returns _RETRY when the failure is worth polling again"""
        try:
            return await operation
        except MelindaTransportError as e:
            self.logger.warning(
                f"Connection problem polling bulk {self.correlation_id}, polling again: {e.__cause__!r}"
            )
            return _RETRY
        except MelindaApiError as e:
            if e.status in ABORTING_STATUSES:
                self.logger.error(
                    f"Polling bulk {self.correlation_id} aborted: {e.status} {e.payload}"
                )
                raise PollingAbortedError(e.status, e.payload) from e
            raise
        except Exception as e:
            self.logger.warning(
                f"Error polling bulk {self.correlation_id}, polling again: {e!r}"
            )
            return _RETRY

    async def _finish(self) -> Any:
        results = await self._attempt(self._read_final_metadata())
        if results is _RETRY:
            return _RETRY
        return self._first_metadata(results)

    async def poll_until_complete(self) -> Optional[Dict[str, Any]]:
        """Poll the bulk state until the job reaches a final state

        Returns the bulk metadata of the job, or the metadata at the first observed
        state change when config.break_on_state_change is set. Connection problems
        are retried without limit; wrap the call in asyncio.wait_for for a deadline.
        Errors raised by on_state_change propagate to the caller.
        """
        modification_time: Any = _UNSET
        wait = False
        idle_polls = 0

        while True:
            if wait:
                await self._wait_before_retry(idle_polls)
                idle_polls += 1
                wait = False

            self.logger.debug(f"Polling bulk state: {self.correlation_id}")
            state = await self._attempt(self.client.get_bulk_state(self.correlation_id))
            if state is _RETRY:
                wait = True
                continue
            self.logger.debug(f"Got bulk state info: {state}")

            if state.is_terminal:
                self.logger.debug(f"Bulk final state {state.state_name}")
                metadata = await self._finish()
                if metadata is _RETRY:
                    wait = True
                    continue
                return metadata

            if modification_time is _UNSET:
                self.logger.debug(
                    f"State: {state.state_name}, "
                    f"setting modification time: {state.modification_time}"
                )
                modification_time = state.modification_time
                await self._handle_state_change(state)
                continue

            if state.modification_time == modification_time:
                wait = True
                continue

            modification_time = state.modification_time
            await self._handle_state_change(state)

            if self.config.break_on_state_change:
                metadata = await self._finish()
                if metadata is _RETRY:
                    wait = True
                    continue
                return metadata

            records = state.records_handled
            self.logger.debug(
                f"State: {state.state_name}, "
                f"modification time: {state.modification_time}"
                + (f", records handled: {records}" if records is not None else "")
            )
            idle_polls = 0
            wait = True


async def poll_melinda_rest_api(
    client: BulkStateSource,
    correlation_id: str,
    break_loop_on_state_change: bool = False,
    poll_interval: float = 3.0,
) -> Optional[Dict[str, Any]]:
    config = PollingConfig(
        interval=poll_interval, break_on_state_change=break_loop_on_state_change
    )
    return await BulkPoller(client, correlation_id, config).poll_until_complete()
