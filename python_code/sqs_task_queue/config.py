"""
Configuration for queue managers, loaded from environment variables.

Each queue is configured under its own prefix, `TASK_QUEUE_<NAME>_`, where
`<NAME>` is the queue name upper-cased with dashes replaced by underscores:

    TASK_QUEUE_<NAME>_URL                 (required)
    TASK_QUEUE_<NAME>_REGION              (falls back to AWS_REGION)
    TASK_QUEUE_<NAME>_CREDENTIALS_MODE    none | named-profile | explicit-key-pair
    TASK_QUEUE_<NAME>_PROFILE
    TASK_QUEUE_<NAME>_ACCESS_KEY_ID
    TASK_QUEUE_<NAME>_SECRET_KEY
    TASK_QUEUE_<NAME>_RUNNERS             import path, e.g. "myapp.tasks:registry"
    TASK_QUEUE_<NAME>_DECODE_ERROR_POLICY leave | delete

`TASK_QUEUES` lists the queue names, comma separated, for `queues.QueueRegistry`.

The queue manager itself never reads the environment; it is constructed with
explicit values; only `queues.QueueRegistry` and the runner command go
through this module.
"""

import importlib
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import ConfigurationError
from .registry import TaskRunnerRegistry

ENV_PREFIX = "TASK_QUEUE"


def get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Gets an environment variable or raises a ValueError for fast-failure.

    Args:
        name: The name of the environment variable.
        default: An optional default value. If not provided, the variable is required.

    Returns:
        The value of the environment variable.

    Raises:
        ValueError: If the required environment variable is not set.
    """
    value = os.environ.get(name, default)
    if value is None:
        raise ValueError(f"FATAL: Environment variable '{name}' is not set.")
    return value


class CredentialMode(str, Enum):
    NONE = "none"
    PROFILE = "named-profile"
    KEY = "explicit-key-pair"

    @classmethod
    def parse(cls, value: str) -> "CredentialMode":
        aliases = {"null": cls.NONE, "profile": cls.PROFILE, "key": cls.KEY}
        normalised = value.strip().lower()
        if normalised in aliases:
            return aliases[normalised]
        try:
            return cls(normalised)
        except ValueError:
            raise ConfigurationError(f"Unknown credentials mode '{value}'") from None


class DecodeErrorPolicy(str, Enum):
    """What to do with a received message whose body is not valid JSON."""

    LEAVE = "leave"
    DELETE = "delete"


@dataclass(frozen=True)
class Credentials:
    """
    How the SQS client authenticates.

    `NONE` defers to boto3's default credential provider chain (environment,
    shared config, instance role).
    """

    mode: CredentialMode = CredentialMode.NONE
    profile: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_key: Optional[str] = None

    def __post_init__(self):
        if self.mode is CredentialMode.PROFILE and not self.profile:
            raise ConfigurationError("Credentials mode 'named-profile' requires a profile name")
        if self.mode is CredentialMode.KEY and not (self.access_key_id and self.secret_key):
            raise ConfigurationError("Credentials mode 'explicit-key-pair' requires an access key id and secret key")

    @classmethod
    def infer(
        cls,
        mode: Optional[str] = None,
        profile: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_key: Optional[str] = None,
    ) -> "Credentials":
        """Builds credentials, inferring the mode from the values given when it is not set."""
        if mode:
            resolved = CredentialMode.parse(mode)
        elif profile:
            resolved = CredentialMode.PROFILE
        elif access_key_id and secret_key:
            resolved = CredentialMode.KEY
        else:
            resolved = CredentialMode.NONE
        return cls(mode=resolved, profile=profile, access_key_id=access_key_id, secret_key=secret_key)


def _env_name(queue_name: str, suffix: str) -> str:
    return f"{ENV_PREFIX}_{queue_name.upper().replace('-', '_')}_{suffix}"


@dataclass(frozen=True)
class QueueSettings:
    name: str
    queue_url: str
    region: str
    credentials: Credentials
    runners: Optional[str] = None
    decode_error_policy: DecodeErrorPolicy = DecodeErrorPolicy.LEAVE

    @classmethod
    def from_env(cls, queue_name: str) -> "QueueSettings":
        """
        Loads the settings of one named queue.

        Raises:
            ValueError: If the queue URL or region is not configured.
            ConfigurationError: If the credentials or decode policy are invalid.
        """

        def _optional(suffix: str) -> Optional[str]:
            return os.environ.get(_env_name(queue_name, suffix)) or None

        region = os.environ.get(_env_name(queue_name, "REGION")) or get_env_var("AWS_REGION")
        policy = _optional("DECODE_ERROR_POLICY") or DecodeErrorPolicy.LEAVE.value
        try:
            decode_error_policy = DecodeErrorPolicy(policy.lower())
        except ValueError:
            raise ConfigurationError(f"Unknown decode error policy '{policy}'") from None

        return cls(
            name=queue_name,
            queue_url=get_env_var(_env_name(queue_name, "URL")),
            region=region,
            credentials=Credentials.infer(
                mode=_optional("CREDENTIALS_MODE"),
                profile=_optional("PROFILE"),
                access_key_id=_optional("ACCESS_KEY_ID"),
                secret_key=_optional("SECRET_KEY"),
            ),
            runners=_optional("RUNNERS"),
            decode_error_policy=decode_error_policy,
        )


def load_registry(path: str) -> TaskRunnerRegistry:
    """
    Imports the task runner registry named by `module:attribute`.

    The attribute may be a TaskRunnerRegistry or a zero-argument callable
    returning one.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Runner path '{path}' must have the form 'module:attribute'")

    target = getattr(importlib.import_module(module_name), attribute)
    if not isinstance(target, TaskRunnerRegistry) and callable(target):
        target = target()
    if not isinstance(target, TaskRunnerRegistry):
        raise ConfigurationError(f"'{path}' did not resolve to a TaskRunnerRegistry")
    return target
