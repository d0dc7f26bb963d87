"""
Named queue managers for applications that talk to more than one queue.

    registry = QueueRegistry.from_env(["image-jobs", "emails"])
    registry.get_queue("emails").enqueue_task("send-email", {"to": "a@example.com"})

When no names are given, `from_env` reads them from `TASK_QUEUES`, a comma
separated list. Each name is then configured as described in `config`.
"""

from typing import Dict, Iterable, Iterator, Mapping, Optional

from aws_lambda_powertools import Logger

from .config import QueueSettings, get_env_var, load_registry
from .exceptions import ConfigurationError, UnknownQueueError
from .manager import SERVICE_NAME, QueueManager

logger = Logger(service=SERVICE_NAME, child=True)

QUEUE_NAMES_ENV = "TASK_QUEUES"


def _names_from_env() -> Iterator[str]:
    for name in get_env_var(QUEUE_NAMES_ENV).split(","):
        if name.strip():
            yield name.strip()


class QueueRegistry:
    """Looks up configured queue managers by name."""

    def __init__(self, queues: Mapping[str, QueueManager]):
        self._queues: Dict[str, QueueManager] = dict(queues)

    @classmethod
    def from_env(cls, names: Optional[Iterable[str]] = None, runners: Optional[str] = None) -> "QueueRegistry":
        """
        Builds a manager for each named queue from its environment settings.

        Args:
            names: The queues to configure. Defaults to the names in `TASK_QUEUES`.
            runners: A `module:attribute` registry path used for every queue in
                place of each queue's own `TASK_QUEUE_<NAME>_RUNNERS`.

        Raises:
            ValueError: If a queue URL or region, or `TASK_QUEUES`, is not set.
            ConfigurationError: If a queue has no task runners or invalid settings.
        """
        queues = {}
        for name in names if names is not None else _names_from_env():
            settings = QueueSettings.from_env(name)
            path = runners or settings.runners
            if not path:
                raise ConfigurationError(f"No task runners configured for queue '{name}'")
            queues[name] = QueueManager.from_settings(settings, load_registry(path))
            logger.info("Configured queue.", extra={"queue": name, "queue_url": settings.queue_url})
        return cls(queues)

    def get_queue(self, name: str) -> QueueManager:
        try:
            return self._queues[name]
        except KeyError:
            raise UnknownQueueError(name) from None

    @property
    def queues(self) -> Dict[str, QueueManager]:
        return dict(self._queues)

    def __contains__(self, name: object) -> bool:
        return name in self._queues

    def __len__(self) -> int:
        return len(self._queues)
