"""
Exception hierarchy for the SQS task queue.

Configuration and payload errors are raised synchronously at the call that
caused them. Broker failures are not wrapped: boto3's `ClientError` and
`BotoCoreError` propagate unchanged so callers can inspect the AWS error code.
"""

from typing import Optional


class TaskQueueError(Exception):
    """Base class for all task queue errors."""


class ConfigurationError(TaskQueueError, ValueError):
    """Raised for invalid wiring: queues, credentials or task runners."""


class DuplicateTaskRunnerError(ConfigurationError):
    def __init__(self, task_type: str):
        super().__init__(f"Duplicate task runner registered for task type '{task_type}'")
        self.task_type = task_type


class RegistryFrozenError(ConfigurationError):
    def __init__(self, task_type: str):
        super().__init__(
            f"Unable to register task type '{task_type}': the registry is already in use by a queue manager"
        )
        self.task_type = task_type


class UnknownTaskTypeError(ConfigurationError):
    def __init__(self, task_type: str):
        super().__init__(
            f"Unable to enqueue task '{task_type}' as there is no registered runner for it"
        )
        self.task_type = task_type


class UnknownQueueError(ConfigurationError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"{name} is not in your list of configured queues.")
        self.name = name


class TaskRunnerNotFoundError(TaskQueueError, LookupError):
    def __init__(self, task_type: Optional[str]):
        super().__init__(
            f"Unable to process task - no task runner is registered for task type {task_type}"
        )
        self.task_type = task_type


class MessageTooLargeError(TaskQueueError, ValueError):
    """An encoded message (or batch entry envelope) is over the byte ceiling."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Encoded message was too long: {size / 1000}KB provided - {limit / 1000}KB maximum"
        )
        self.size = size
        self.limit = limit


class MalformedMessageError(TaskQueueError, ValueError):
    """A received message body could not be decoded as JSON."""

    def __init__(self, message_id: str, reason: str):
        super().__init__(f"Malformed body for message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason
