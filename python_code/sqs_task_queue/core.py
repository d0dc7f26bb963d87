"""
Pure helpers for building SQS messages and batches.

These functions make no AWS SDK calls and hold no global state. Everything
they need, including the Powertools logger, is passed in by the queue manager,
which keeps the size and chunking rules unit-testable in isolation.
"""

import hashlib
import json
from typing import Any, Iterable, Iterator, List, Tuple

from aws_lambda_powertools import Logger
from mypy_boto3_sqs.type_defs import SendMessageBatchRequestEntryTypeDef

from .exceptions import MessageTooLargeError
from .model import TASK_ATTRIBUTE, TaskSpec

# A batch entry paired with its encoded envelope size in bytes.
SizedEntry = Tuple[SendMessageBatchRequestEntryTypeDef, int]


def encode_body(arguments: Any, already_encoded: bool = False) -> str:
    """Encodes task arguments as the JSON message body, unless the caller already did."""
    if already_encoded:
        if not isinstance(arguments, str):
            raise TypeError(f"Pre-encoded arguments must be a str, got {type(arguments).__name__}")
        return arguments
    return json.dumps(arguments)


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def deduplication_id(task_type: str, body: str) -> str:
    """
    Derives a deterministic id from the task type and body.

    Identical (type, body) pairs produce the same id, so they deduplicate and
    share a message group unless the caller supplies ids of its own.
    """
    return hashlib.sha256(f"{task_type};{body}".encode("utf-8")).hexdigest()


def task_message_attributes(task_type: str) -> dict:
    return {TASK_ATTRIBUTE: {"DataType": "String", "StringValue": task_type}}


def ensure_within_limit(size: int, limit: int) -> None:
    if size > limit:
        raise MessageTooLargeError(size, limit)


def build_batch_entry(
    entry_id: str, spec: TaskSpec, body: str, fifo: bool
) -> SendMessageBatchRequestEntryTypeDef:
    """
    Builds one `SendMessageBatch` entry.

    Group and deduplication ids are only valid on FIFO queues. A per-message
    delay is only sent when one was asked for.
    """
    entry: SendMessageBatchRequestEntryTypeDef = {
        "Id": entry_id,
        "MessageBody": body,
        "MessageAttributes": task_message_attributes(spec.task),
    }
    if fifo:
        dedup_id = spec.deduplication_id or deduplication_id(spec.task, body)
        entry["MessageDeduplicationId"] = dedup_id
        entry["MessageGroupId"] = spec.message_group_id or dedup_id
    if spec.delay:
        entry["DelaySeconds"] = spec.delay
    return entry


def envelope_size(entry: SendMessageBatchRequestEntryTypeDef) -> int:
    """The size of an entry as it counts against the batch byte ceiling."""
    return byte_length(json.dumps(entry))


def chunk_entries(
    entries: Iterable[SizedEntry], max_entries: int, max_bytes: int, logger: Logger
) -> Iterator[List[SendMessageBatchRequestEntryTypeDef]]:
    """
    Groups batch entries into chunks that each fit in one `SendMessageBatch` call.

    A chunk holds at most `max_entries` entries and at most `max_bytes` of
    cumulative envelope size. The current chunk is yielded as soon as the next
    entry would breach either bound, so a caller sending each chunk as it
    arrives never builds more than one chunk ahead.

    An entry that on its own exceeds `max_bytes` can never be sent. It is
    logged and skipped, and the remaining entries carry on.

    Args:
        entries: (entry, envelope size) pairs in submission order.
        max_entries: The maximum number of entries per chunk.
        max_bytes: The maximum cumulative envelope size per chunk.
        logger: The Powertools Logger instance for structured logging.

    Yields:
        Lists of entries, in submission order.
    """
    chunk: List[SendMessageBatchRequestEntryTypeDef] = []
    chunk_bytes = 0

    for entry, size in entries:
        if size > max_bytes:
            logger.error(
                "A single message exceeded the maximum SQS request size and was skipped.",
                extra={
                    "entry_id": entry["Id"],
                    "error": str(MessageTooLargeError(size, max_bytes)),
                    "message_body": entry["MessageBody"][:1024],
                },
            )
            continue

        if chunk and (chunk_bytes + size > max_bytes or len(chunk) == max_entries):
            yield chunk
            chunk = []
            chunk_bytes = 0

        chunk.append(entry)
        chunk_bytes += size

    if chunk:
        yield chunk
