"""
Typed snapshot of the attributes SQS reports for a queue.

Used for reporting and observability only. A snapshot is parsed fresh from each
`GetQueueAttributes` call and never cached.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional


def _int(attributes: Mapping[str, str], name: str) -> int:
    return int(attributes.get(name, 0) or 0)


def _flag(attributes: Mapping[str, str], name: str) -> bool:
    # SQS only reports the FIFO flags for FIFO queues.
    return str(attributes.get(name, "false")).lower() == "true"


def _timestamp(attributes: Mapping[str, str], name: str) -> Optional[datetime]:
    value = attributes.get(name)
    if value is None:
        return None
    # Epoch seconds; some endpoints report a fractional part.
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


@dataclass(frozen=True)
class RedrivePolicy:
    """Where messages go once they exceed `max_receive_count` deliveries."""

    dead_letter_target_arn: str
    max_receive_count: int

    @classmethod
    def from_json(cls, raw: str) -> "RedrivePolicy":
        policy = json.loads(raw)
        return cls(
            dead_letter_target_arn=policy["deadLetterTargetArn"],
            max_receive_count=int(policy["maxReceiveCount"]),
        )


@dataclass(frozen=True)
class QueueAttributes:
    """
    Queue metadata reported by SQS.

    Attributes:
        arn: The Amazon resource name of the queue.
        approximate_number_of_messages: Messages visible and available for retrieval.
        approximate_number_of_messages_not_visible: Messages in flight (received
            but not yet deleted or timed out).
        approximate_number_of_messages_delayed: Messages waiting to become visible.
        maximum_message_size: Bytes a message may contain before SQS rejects it.
        message_retention_period: Seconds SQS retains a message.
        default_delay_seconds: The queue-level delivery delay.
        default_receive_message_wait_time_seconds: The queue-level long-poll wait.
        default_visibility_timeout: The queue-level visibility timeout.
        created_at: When the queue was created.
        updated_at: When the queue was last changed. Message traffic does not
            count as a change.
        fifo_queue: Whether the queue is FIFO.
        content_based_deduplication: Whether SQS derives deduplication ids from
            the body when none is given.
        redrive_policy: The dead-letter routing, if configured.
    """

    arn: str
    approximate_number_of_messages: int
    approximate_number_of_messages_not_visible: int
    approximate_number_of_messages_delayed: int
    maximum_message_size: int
    message_retention_period: int
    default_delay_seconds: int
    default_receive_message_wait_time_seconds: int
    default_visibility_timeout: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    fifo_queue: bool
    content_based_deduplication: bool
    redrive_policy: Optional[RedrivePolicy] = None

    @classmethod
    def from_response(cls, attributes: Mapping[str, str]) -> "QueueAttributes":
        redrive_policy = None
        if attributes.get("RedrivePolicy"):
            redrive_policy = RedrivePolicy.from_json(attributes["RedrivePolicy"])

        return cls(
            arn=attributes.get("QueueArn", ""),
            approximate_number_of_messages=_int(attributes, "ApproximateNumberOfMessages"),
            approximate_number_of_messages_not_visible=_int(attributes, "ApproximateNumberOfMessagesNotVisible"),
            approximate_number_of_messages_delayed=_int(attributes, "ApproximateNumberOfMessagesDelayed"),
            maximum_message_size=_int(attributes, "MaximumMessageSize"),
            message_retention_period=_int(attributes, "MessageRetentionPeriod"),
            default_delay_seconds=_int(attributes, "DelaySeconds"),
            default_receive_message_wait_time_seconds=_int(attributes, "ReceiveMessageWaitTimeSeconds"),
            default_visibility_timeout=_int(attributes, "VisibilityTimeout"),
            created_at=_timestamp(attributes, "CreatedTimestamp"),
            updated_at=_timestamp(attributes, "LastModifiedTimestamp"),
            fifo_queue=_flag(attributes, "FifoQueue"),
            content_based_deduplication=_flag(attributes, "ContentBasedDeduplication"),
            redrive_policy=redrive_policy,
        )
