"""
Data models for the SQS task queue.

This module defines the structures passed between the queue manager, the task
runner registry and the task runners themselves. Using dataclasses and enums
keeps the data contracts explicit and statically checked by mypy.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from mypy_boto3_sqs.type_defs import MessageTypeDef

from .exceptions import MalformedMessageError

TASK_ATTRIBUTE = "task"
RECEIVE_COUNT_ATTRIBUTE = "ApproximateReceiveCount"


def parse_message_attributes(message_attributes: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Flattens SQS message attributes into a plain `name -> value` mapping.

    SQS stores the value under `StringValue` for the String and Number data
    types (including custom suffixes such as `Number.int`) and under
    `BinaryValue` for Binary.
    """
    parsed: Dict[str, Any] = {}
    for name, attribute in message_attributes.items():
        base_type = attribute.get("DataType", "String").split(".", 1)[0]
        value_key = "BinaryValue" if base_type == "Binary" else "StringValue"
        parsed[name] = attribute.get(value_key)
    return parsed


def message_task_type(message: MessageTypeDef) -> Optional[str]:
    """Reads the task type of a raw message without decoding its body."""
    return parse_message_attributes(message.get("MessageAttributes", {})).get(TASK_ATTRIBUTE)


@dataclass(frozen=True, eq=False)
class Task:
    """
    A single delivery of a message received from the queue.

    The message facts are set once by the queue manager immediately after a
    receive call. Only `completed` changes afterwards, and only from False to
    True via `mark_complete`.

    Attributes:
        id: The broker-assigned message id. A redelivery can carry a new id, so
            this identifies the delivery rather than the logical task.
        receipt_handle: The token needed to delete (ack) this delivery. It
                        becomes invalid once the visibility timeout expires.
        data: The JSON-decoded message body.
        raw_data: The original body text, kept for logging and replay.
        attributes: Broker metadata such as `ApproximateReceiveCount`.
        message_attributes: User metadata; the `task` entry names the task type.
    """

    id: str
    receipt_handle: str
    data: Any
    raw_data: str
    attributes: Dict[str, str] = field(default_factory=dict)
    message_attributes: Dict[str, Any] = field(default_factory=dict)
    _completed: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_message(cls, message: MessageTypeDef) -> "Task":
        """
        Builds a Task from one entry of a `ReceiveMessage` response.

        Raises:
            MalformedMessageError: If the body is not valid JSON.
        """
        message_id = message["MessageId"]
        body = message.get("Body", "")
        try:
            data = json.loads(body)
        except (TypeError, ValueError) as e:
            raise MalformedMessageError(message_id, str(e)) from e

        return cls(
            id=message_id,
            receipt_handle=message["ReceiptHandle"],
            data=data,
            raw_data=body,
            attributes=dict(message.get("Attributes", {})),
            message_attributes=parse_message_attributes(message.get("MessageAttributes", {})),
        )

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def get_message_attribute(self, name: str) -> Optional[Any]:
        return self.message_attributes.get(name)

    @property
    def task_type(self) -> Optional[str]:
        return self.get_message_attribute(TASK_ATTRIBUTE)

    @property
    def receive_count(self) -> int:
        """How many times this message has been delivered, including this one."""
        try:
            return int(self.get_attribute(RECEIVE_COUNT_ATTRIBUTE) or 0)
        except ValueError:
            return 0

    @property
    def completed(self) -> bool:
        return self._completed

    def mark_complete(self) -> None:
        # The message facts are frozen; completion is the one flag that moves.
        object.__setattr__(self, "_completed", True)


@dataclass(frozen=True)
class TaskSpec:
    """One entry of a batch enqueue call."""

    task: str
    arguments: Any = None
    delay: int = 0
    message_group_id: Optional[str] = None
    deduplication_id: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union["TaskSpec", Mapping[str, Any]]) -> "TaskSpec":
        if isinstance(value, TaskSpec):
            return value
        return cls(
            task=value["task"],
            arguments=value.get("arguments"),
            delay=value.get("delay", 0) or 0,
            message_group_id=value.get("message_group_id"),
            deduplication_id=value.get("deduplication_id"),
        )


@dataclass
class BatchEnqueueResult:
    """
    The outcome of a batch enqueue call.

    `failed` is derived as the number of submitted tasks minus `successful`, so
    it also counts entries skipped for size and entries never sent because an
    earlier chunk failed.

    Attributes:
        successful: Number of entries the broker accepted.
        failed: Number of entries that were not accepted.
        ids: Broker message ids of the accepted entries, in input order.
    """

    successful: int = 0
    failed: int = 0
    ids: List[str] = field(default_factory=list)


class DispatchOutcome(str, Enum):
    ACKED = "acked"
    NOT_COMPLETED = "not-completed"
    RUNNER_MISSING = "runner-missing"
    HANDLER_FAILED = "handler-failed"
    MALFORMED_BODY = "malformed-body"


@dataclass(frozen=True)
class DispatchResult:
    """
    The terminal state of one delivery attempt.

    Anything other than an acked result leaves the message on the queue, where
    the visibility timeout and the queue's redrive policy decide what happens
    next.
    """

    task_id: str
    task_type: Optional[str]
    outcome: DispatchOutcome
    acked: bool = False
    reason: Optional[str] = None
