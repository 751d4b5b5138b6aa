import json
import os
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QueueItemState(str, Enum):
    UPLOADING = "UPLOADING"
    WAITING_FOR_RECORDS = "WAITING_FOR_RECORDS"
    PENDING_QUEUING = "PENDING_QUEUING"
    QUEUING_IN_PROGRESS = "QUEUING_IN_PROGRESS"
    IN_QUEUE = "IN_QUEUE"
    QUEUED = "QUEUED"
    PENDING_VALIDATION = "PENDING_VALIDATION"
    VALIDATING = "VALIDATING"
    IN_PROCESS = "IN_PROCESS"
    DONE = "DONE"
    ERROR = "ERROR"
    ABORT = "ABORT"


# None covers a bulk state response without a queueItemState
TERMINAL_STATES = frozenset(
    {QueueItemState.DONE, QueueItemState.ERROR, QueueItemState.ABORT, None}
)


class BulkState(BaseModel):
    """Status of a single bulk queue item as reported by the backend"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    queue_item_state: Optional[Union[QueueItemState, str]] = Field(
        default=None, alias="queueItemState"
    )
    modification_time: Optional[Any] = Field(default=None, alias="modificationTime")
    records: Optional[List[Any]] = None

    @field_validator("queue_item_state", mode="before")
    @classmethod
    def _known_state(cls, value: Any) -> Any:
        try:
            return QueueItemState(value)
        except ValueError:
            return value

    @property
    def is_terminal(self) -> bool:
        return self.queue_item_state in TERMINAL_STATES

    @property
    def records_handled(self) -> Optional[int]:
        return None if self.records is None else len(self.records)

    @property
    def state_name(self) -> Optional[str]:
        if isinstance(self.queue_item_state, QueueItemState):
            return self.queue_item_state.value
        return self.queue_item_state


class MarcRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    leader: str = ""
    fields: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def parse(cls, data: Union[str, Dict[str, Any]]) -> "MarcRecord":
        """Builds a record from a JSON string or an already decoded dict"""
        if isinstance(data, str):
            data = json.loads(data)
        return cls.model_validate(data)


class ReadRecordResult(BaseModel):
    record: MarcRecord


class CreateRecordResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    record_id: Optional[str] = Field(default=None, alias="recordId")


class RequestDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    path: str = ""
    params: Optional[Dict[str, Any]] = None
    body: Optional[Any] = None
    content_type: str = "application/json"


class ClientConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str
    username: str
    password: str
    cataloger: Optional[str] = None
    user_agent: str = "Melinda commons API client / Python"
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Reads the connection settings from MELINDA_API_* environment variables"""
        values = {
            "base_url": os.environ["MELINDA_API_URL"],
            "username": os.environ["MELINDA_API_USERNAME"],
            "password": os.environ["MELINDA_API_PASSWORD"],
            "cataloger": os.getenv("MELINDA_API_CATALOGER") or None,
        }
        user_agent = os.getenv("MELINDA_API_USER_AGENT")
        if user_agent:
            values["user_agent"] = user_agent
        return cls(**values)


class PollingConfig(BaseModel):
    interval: float = Field(default=3.0, ge=0)
    break_on_state_change: bool = False
    backoff_factor: float = Field(default=1.0, ge=1.0)
    max_interval: float = Field(default=60.0, ge=0)
    jitter: bool = False
