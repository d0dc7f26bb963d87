"""
The queue manager: enqueue, poll, dispatch and acknowledge tasks on one SQS queue.

Producers call `enqueue_task` / `batch_enqueue_tasks`. Consumers call `poll`
repeatedly; each received message becomes a Task, is handed to the runner
registered for its task type and is deleted once the runner marks it complete.

Failure isolation is the core contract of the consumer path: a missing runner,
a runner that raises or a malformed body affects only its own message, which is
left on the queue for SQS to redeliver (and eventually dead-letter, if the queue
has a redrive policy). Only broker failures on receive or delete escape `poll`.

All calls are synchronous. Multiple managers, in any number of processes, may
poll the same queue; the visibility timeout is the only mutual exclusion.
"""

import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_sqs import SQSClient
from mypy_boto3_sqs.type_defs import MessageTypeDef, SendMessageBatchRequestEntryTypeDef

from . import core
from .attributes import QueueAttributes
from .clients import get_sqs_client
from .config import Credentials, DecodeErrorPolicy, QueueSettings
from .exceptions import MalformedMessageError, TaskRunnerNotFoundError, UnknownTaskTypeError
from .model import BatchEnqueueResult, DispatchOutcome, DispatchResult, Task, TaskSpec, message_task_type
from .registry import TaskRunnerRegistry

SERVICE_NAME = "sqs-task-queue"


class QueueManager:
    """
    Enqueues and dispatches tasks on one SQS queue.

    Constructing a manager freezes the TaskRunnerRegistry it is given: the
    caller's registry object rejects any further `register` calls from then on.
    Build the registry completely before handing it over.
    """

    # SQS' max message size is 256KiB; this leaves headroom for encoding.
    MESSAGE_LENGTH_BYTES = 256000
    MESSAGE_LENGTH_ENTRIES = 10

    DEFAULT_WAIT_TIME = 20
    DEFAULT_WORKER_TIME = 300
    DEFAULT_JOB_COUNT = 1

    PRIOR_RECEIVE_ATTEMPT_WARNING = 3

    def __init__(
        self,
        queue_url: str,
        region: str,
        registry: TaskRunnerRegistry,
        credentials: Optional[Credentials] = None,
        sqs_client: Optional[SQSClient] = None,
        logger: Optional[Logger] = None,
        decode_error_policy: DecodeErrorPolicy = DecodeErrorPolicy.LEAVE,
    ):
        """
        Args:
            queue_url: The URL of the SQS queue. A `.fifo` suffix marks a FIFO queue.
            region: The AWS region hosting the queue.
            registry: The task runners this manager dispatches to. It is frozen
                      here and cannot be added to afterwards.
            credentials: How to authenticate; defaults to boto3's provider chain.
            sqs_client: An existing client to use instead of building one.
            logger: The Powertools Logger instance for structured logging.
            decode_error_policy: Whether a message with a malformed body is left
                                 for redelivery or deleted.
        """
        self.queue_url = queue_url
        self.region = region
        self.credentials = credentials or Credentials()
        self.registry = registry
        self.registry.freeze()
        self.decode_error_policy = decode_error_policy
        self.logger = logger or Logger(service=SERVICE_NAME)
        self.sqs_client = sqs_client or get_sqs_client(region, self.credentials)

    @classmethod
    def from_settings(
        cls, settings: QueueSettings, registry: TaskRunnerRegistry, sqs_client: Optional[SQSClient] = None
    ) -> "QueueManager":
        return cls(
            settings.queue_url,
            settings.region,
            registry,
            credentials=settings.credentials,
            sqs_client=sqs_client,
            decode_error_policy=settings.decode_error_policy,
        )

    @property
    def fifo(self) -> bool:
        return self.queue_url.endswith(".fifo")

    # --- Producer side ---

    def enqueue_task(
        self,
        task: str,
        arguments: Any,
        delay: int = 0,
        message_group_id: Optional[str] = None,
        deduplication_id: Optional[str] = None,
        already_encoded: bool = False,
    ) -> str:
        """
        Sends a single task to the queue.

        Args:
            task: The task type; a runner must be registered for it.
            arguments: The task payload. JSON-encoded unless `already_encoded`.
            delay: Seconds before the message becomes visible.
            message_group_id: FIFO ordering partition. Defaults to the deduplication id.
            deduplication_id: FIFO deduplication key. Defaults to a SHA-256 of
                              the task type and body.
            already_encoded: True if `arguments` is an encoded body string.

        Returns:
            The broker-assigned message id.

        Raises:
            UnknownTaskTypeError: If no runner is registered for `task`.
            MessageTooLargeError: If the encoded body exceeds MESSAGE_LENGTH_BYTES.
            botocore.exceptions.ClientError: If the send fails. Not retried.
        """
        if not self.registry.has(task):
            raise UnknownTaskTypeError(task)

        body = core.encode_body(arguments, already_encoded)
        core.ensure_within_limit(core.byte_length(body), self.MESSAGE_LENGTH_BYTES)

        params = {
            "QueueUrl": self.queue_url,
            "MessageBody": body,
            "MessageAttributes": core.task_message_attributes(task),
        }
        if self.fifo:
            deduplication_id = deduplication_id or core.deduplication_id(task, body)
            params["MessageDeduplicationId"] = deduplication_id
            params["MessageGroupId"] = message_group_id or deduplication_id
        if delay:
            params["DelaySeconds"] = delay

        response = self.sqs_client.send_message(**params)
        message_id = response["MessageId"]
        self.logger.debug("Enqueued task.", extra={"task_type": task, "task_id": message_id})
        return message_id

    def batch_enqueue_tasks(
        self, tasks: Iterable[Union[TaskSpec, Mapping[str, Any]]], already_encoded: bool = False
    ) -> BatchEnqueueResult:
        """
        Sends many tasks using as few `SendMessageBatch` calls as the limits allow.

        Entries are chunked by count (MESSAGE_LENGTH_ENTRIES) and by cumulative
        envelope size (MESSAGE_LENGTH_BYTES). An entry too large to ever fit is
        logged and skipped; the rest are still sent. Each chunk is retried once
        on failure. If the retry fails too, the error propagates and later
        chunks are not attempted.

        Entries the broker rejects individually (e.g. invalid parameters) are
        not call failures; they are simply absent from the returned ids.

        Raises:
            UnknownTaskTypeError: If any task has no registered runner. Nothing is sent.
            TypeError: If any payload cannot be encoded. Nothing is sent.
            botocore.exceptions.ClientError: If a chunk fails twice.
        """
        specs = [TaskSpec.coerce(task) for task in tasks]
        for spec in specs:
            if not self.registry.has(spec.task):
                raise UnknownTaskTypeError(spec.task)

        # Every body is encoded before the first send, so a payload error
        # leaves the queue untouched.
        sized_entries = self._sized_entries(specs, already_encoded)

        ids_by_position: Dict[int, str] = {}
        chunks = core.chunk_entries(
            sized_entries,
            self.MESSAGE_LENGTH_ENTRIES,
            self.MESSAGE_LENGTH_BYTES,
            self.logger,
        )
        for chunk in chunks:
            try:
                sent = self._send_message_batch(chunk)
            except (ClientError, BotoCoreError):
                self.logger.error(
                    "Batch enqueue aborted; remaining chunks were not sent.",
                    extra={"submitted": len(specs), "successful": len(ids_by_position)},
                )
                raise
            for entry_id, message_id in sent:
                ids_by_position[int(entry_id)] = message_id

        ids = [ids_by_position[position] for position in sorted(ids_by_position)]
        return BatchEnqueueResult(successful=len(ids), failed=len(specs) - len(ids), ids=ids)

    def _sized_entries(self, specs: List[TaskSpec], already_encoded: bool) -> List[core.SizedEntry]:
        # Entry ids are input positions, which keeps them distinct within a
        # batch even when two tasks share a type and body.
        sized_entries = []
        for position, spec in enumerate(specs):
            body = core.encode_body(spec.arguments, already_encoded)
            entry = core.build_batch_entry(str(position), spec, body, self.fifo)
            sized_entries.append((entry, core.envelope_size(entry)))
        return sized_entries

    def _send_message_batch(self, entries: List[SendMessageBatchRequestEntryTypeDef]) -> List[Tuple[str, str]]:
        """Sends one chunk, retrying exactly once. Returns (entry id, message id) pairs."""
        for attempt in (1, 2):
            try:
                response = self.sqs_client.send_message_batch(QueueUrl=self.queue_url, Entries=entries)
                break
            except (ClientError, BotoCoreError) as e:
                retry_message = " This will be reattempted." if attempt == 1 else ""
                self.logger.error(
                    f"SQS SendMessageBatch call failure: {e}.{retry_message}",
                    extra={"attempt": attempt, "entries": len(entries)},
                )
                if attempt == 2:
                    raise

        if failed := response.get("Failed"):
            self.logger.warning(
                "Partial failure in SQS send batch.",
                extra={"failed_messages": failed},
            )
        return [(entry["Id"], entry["MessageId"]) for entry in response.get("Successful", [])]

    # --- Consumer side ---

    def poll(
        self,
        wait_time: int = DEFAULT_WAIT_TIME,
        worker_time: int = DEFAULT_WORKER_TIME,
        count: int = DEFAULT_JOB_COUNT,
    ) -> int:
        """
        Long-polls the queue once and dispatches every message received.

        Messages are processed one after another in the order SQS returned them.
        A failure in one task never stops the others.

        Args:
            wait_time: Seconds the receive call may wait for messages to arrive.
            worker_time: Visibility timeout granted for processing this batch.
            count: The maximum number of messages to receive (1-10).

        Returns:
            The number of messages received; 0 when the long poll timed out empty.

        Raises:
            botocore.exceptions.ClientError: If the receive, or the delete of a
                completed task, fails.
        """
        self.logger.debug(
            "Fetching tasks from queue.",
            extra={"count": count, "queue_url": self.queue_url, "wait_time": wait_time},
        )

        start_time = time.monotonic()
        response = self.sqs_client.receive_message(
            QueueUrl=self.queue_url,
            AttributeNames=["All"],
            MessageAttributeNames=["All"],
            WaitTimeSeconds=wait_time,
            VisibilityTimeout=worker_time,
            MaxNumberOfMessages=count,
        )
        messages = response.get("Messages", [])

        self.logger.debug(
            f"Retrieved {len(messages)} messages after {time.monotonic() - start_time:.3f}s waiting.",
            extra={"queue_url": self.queue_url},
        )

        results = [self._dispatch_message(message) for message in messages]
        left = [result for result in results if not result.acked]
        if left:
            self.logger.info(
                f"{len(left)} of {len(results)} tasks were left for redelivery.",
                extra={"outcomes": [result.outcome.value for result in left]},
            )
        return len(messages)

    def _dispatch_message(self, message: MessageTypeDef) -> DispatchResult:
        try:
            task = Task.from_message(message)
        except MalformedMessageError as e:
            return self._handle_malformed(message, e)
        return self.run_task(task)

    def _handle_malformed(self, message: MessageTypeDef, error: MalformedMessageError) -> DispatchResult:
        task_type = message_task_type(message)
        drop = self.decode_error_policy is DecodeErrorPolicy.DELETE
        self.logger.critical(
            "Unable to decode task body.",
            extra={
                "task_type": task_type,
                "task_id": error.message_id,
                "error": error.reason,
                "action": "deleted" if drop else "left for redelivery",
                "raw_body": message.get("Body", "")[:1024],
            },
        )
        if drop:
            self._delete_message(message["ReceiptHandle"])
        return DispatchResult(
            task_id=error.message_id,
            task_type=task_type,
            outcome=DispatchOutcome.MALFORMED_BODY,
            acked=drop,
            reason=error.reason,
        )

    def run_task(self, task: Task) -> DispatchResult:
        """
        Dispatches one task to its runner and acknowledges it if completed.

        A runner completes a task by calling `task.mark_complete()`, by
        returning True, or both. Completed tasks are deleted from the queue.
        A missing runner or a runner exception is logged at critical severity
        and the message is left for SQS to redeliver; neither is raised.

        Raises:
            botocore.exceptions.ClientError: If deleting a completed task fails.
                Swallowing it would let a finished task be processed again.
        """
        task_type = task.task_type
        receive_count = task.receive_count
        log_keys = {"task_type": task_type, "task_id": task.id, "receive_count": receive_count}

        self.logger.info("Fetched task.", extra=log_keys)

        try:
            runner = self.registry.get(task_type)
        except TaskRunnerNotFoundError:
            self.logger.critical(
                f"Unable to process task with type={task_type}: No associated runner is registered.",
                extra=log_keys,
            )
            return DispatchResult(task.id, task_type, DispatchOutcome.RUNNER_MISSING, reason="no runner registered")

        self.logger.debug("Processing task.", extra={**log_keys, "runner": type(runner).__name__})
        try:
            result = runner.execute(task)
        except Exception as e:
            self.logger.critical(
                f"Caught {type(e).__name__} exception when running task with type={task_type} and "
                f"id={task.id}: {e} (This is attempt {receive_count})",
                exc_info=True,
                extra={**log_keys, "error_type": type(e).__name__},
            )
            return DispatchResult(task.id, task_type, DispatchOutcome.HANDLER_FAILED, reason=f"{type(e).__name__}: {e}")

        self.logger.info("Successfully processed task.", extra=log_keys)

        if result is True or task.completed:
            self.complete_task(task)
            task.mark_complete()
            self.logger.info("Auto-completed task.", extra=log_keys)
            return DispatchResult(task.id, task_type, DispatchOutcome.ACKED, acked=True)

        if receive_count >= self.PRIOR_RECEIVE_ATTEMPT_WARNING:
            self.logger.warning(
                f"Task {task_type}/{task.id} completed processing (attempt #{receive_count}) "
                "but was not marked as complete.",
                extra=log_keys,
            )
        return DispatchResult(task.id, task_type, DispatchOutcome.NOT_COMPLETED, reason="not marked complete")

    def complete_task(self, task: Task) -> None:
        """
        Deletes (acknowledges) a task's message.

        Raises:
            botocore.exceptions.ClientError: If the receipt handle is no longer
                valid, e.g. the visibility timeout already expired. Retrying
                with the same handle will not help.
        """
        self._delete_message(task.receipt_handle)

    def _delete_message(self, receipt_handle: str) -> None:
        self.sqs_client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)

    def get_attributes(self) -> QueueAttributes:
        """Fetches a fresh snapshot of the queue's attributes."""
        response = self.sqs_client.get_queue_attributes(QueueUrl=self.queue_url, AttributeNames=["All"])
        return QueueAttributes.from_response(response.get("Attributes", {}))
