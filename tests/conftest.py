"""Shared test fixtures."""

import json
from typing import Any, List, Optional
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from sqs_task_queue.manager import QueueManager
from sqs_task_queue.model import Task
from sqs_task_queue.registry import TaskRunner, TaskRunnerRegistry

REGION = "eu-west-1"
STANDARD_QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/tasks"
FIFO_QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/tasks.fifo"


class RecordingRunner(TaskRunner):
    """A task runner that records every task it is given."""

    def __init__(self, result: Optional[bool] = None, mark_complete: bool = False, error: Optional[Exception] = None):
        self.result = result
        self.mark_complete = mark_complete
        self.error = error
        self.tasks: List[Task] = []

    def execute(self, task: Task) -> Optional[bool]:
        self.tasks.append(task)
        if self.error is not None:
            raise self.error
        if self.mark_complete:
            task.mark_complete()
        return self.result


def client_error(operation: str, code: str = "InternalError") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, operation)


def make_message(
    message_id: str, task_type: Optional[str], body: Any = None, receive_count: int = 1, raw_body: Optional[str] = None
) -> dict:
    message_attributes = {}
    if task_type is not None:
        message_attributes["task"] = {"DataType": "String", "StringValue": task_type}
    return {
        "MessageId": message_id,
        "ReceiptHandle": f"rh-{message_id}",
        "Body": raw_body if raw_body is not None else json.dumps(body),
        "Attributes": {"ApproximateReceiveCount": str(receive_count)},
        "MessageAttributes": message_attributes,
    }


def accept_all_entries(QueueUrl: str, Entries: list) -> dict:
    return {
        "Successful": [{"Id": entry["Id"], "MessageId": f"msg-{entry['Id']}"} for entry in Entries],
        "Failed": [],
    }


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so no test can ever reach a real AWS account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_REGION", REGION)


@pytest.fixture
def registry() -> TaskRunnerRegistry:
    return TaskRunnerRegistry()


@pytest.fixture
def logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mock_client() -> MagicMock:
    """An SQS client double that accepts everything it is sent."""
    client = MagicMock()
    client.send_message.return_value = {"MessageId": "msg-single"}
    client.send_message_batch.side_effect = accept_all_entries
    client.receive_message.return_value = {}
    client.delete_message.return_value = {}
    return client


@pytest.fixture
def make_manager(registry, mock_client, logger):
    def _make(queue_url: str = FIFO_QUEUE_URL, **kwargs) -> QueueManager:
        kwargs.setdefault("sqs_client", mock_client)
        kwargs.setdefault("logger", logger)
        return QueueManager(queue_url, REGION, registry, **kwargs)

    return _make


@pytest.fixture
def sqs_client():
    with mock_aws():
        yield boto3.client("sqs", region_name=REGION)


@pytest.fixture
def fifo_queue_url(sqs_client) -> str:
    return sqs_client.create_queue(QueueName="tasks.fifo", Attributes={"FifoQueue": "true"})["QueueUrl"]
