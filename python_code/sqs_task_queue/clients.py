"""
A factory module for creating boto3 SQS clients.

Each queue manager owns its own client, built from an explicit region and
credentials rather than shared process state. Tests inject a client directly
or let `moto` intercept the boto3 calls made here.
"""

from typing import Optional

import boto3
import botocore.config
from aws_lambda_powertools import Logger
from mypy_boto3_sqs import SQSClient

from .config import CredentialMode, Credentials

logger = Logger(service="sqs-task-queue", child=True)

# The read timeout must outlast the longest long-poll wait SQS allows (20s),
# otherwise an empty receive surfaces as a client-side timeout.
BOTO_CONFIG = botocore.config.Config(
    connect_timeout=10,
    read_timeout=30,
    retries={"max_attempts": 3, "mode": "standard"},
)


def get_sqs_client(region: str, credentials: Optional[Credentials] = None) -> SQSClient:
    """
    Returns an SQS client for the given region and credentials.

    Args:
        region: The AWS region hosting the queue.
        credentials: How to authenticate. None, or mode NONE, uses boto3's
                     default credential provider chain.

    Returns:
        A boto3 SQS client bound to its own session.
    """
    credentials = credentials or Credentials()

    if credentials.mode is CredentialMode.PROFILE:
        session = boto3.Session(profile_name=credentials.profile, region_name=region)
    elif credentials.mode is CredentialMode.KEY:
        session = boto3.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_key,
            region_name=region,
        )
    else:
        session = boto3.Session(region_name=region)

    logger.debug("Creating SQS client", extra={"region": region, "credentials_mode": credentials.mode.value})
    sqs_client: SQSClient = session.client("sqs", region_name=region, config=BOTO_CONFIG)
    return sqs_client
