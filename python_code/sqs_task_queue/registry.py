"""
Task runners and the registry that maps task types to them.

A registry is built once at startup. The queue manager freezes it on
construction, so the set of task types a consumer can handle is fixed for the
life of the process.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .exceptions import DuplicateTaskRunnerError, RegistryFrozenError, TaskRunnerNotFoundError
from .model import Task


class TaskRunner(ABC):
    """
    Executes one type of task.

    A runner signals completion either by calling `task.mark_complete()` or by
    returning True. Completed tasks are deleted from the queue; anything else is
    left for redelivery once the visibility timeout expires.
    """

    @abstractmethod
    def execute(self, task: Task) -> Optional[bool]:
        raise NotImplementedError()


class CallableTaskRunner(TaskRunner):
    """Adapts a plain function to the TaskRunner interface."""

    def __init__(self, func: Callable[[Task], Optional[bool]]):
        self._func = func

    def execute(self, task: Task) -> Optional[bool]:
        return self._func(task)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({getattr(self._func, '__qualname__', self._func)!r})"


class TaskRunnerRegistry:
    def __init__(self) -> None:
        self._runners: Dict[str, TaskRunner] = {}
        self._frozen = False

    def register(self, task_type: str, runner: TaskRunner) -> None:
        """
        Binds a runner to a task type.

        Raises:
            ValueError: If the task type is empty.
            TypeError: If the runner is not a TaskRunner.
            DuplicateTaskRunnerError: If the task type is already bound.
            RegistryFrozenError: If a queue manager is already using this registry.
        """
        if not isinstance(task_type, str) or not task_type:
            raise ValueError("Task type must be a non-empty string")
        if not isinstance(runner, TaskRunner):
            raise TypeError(f"Task runner for '{task_type}' must be a TaskRunner, got {type(runner).__name__}")
        if self._frozen:
            raise RegistryFrozenError(task_type)
        if self.has(task_type):
            raise DuplicateTaskRunnerError(task_type)

        self._runners[task_type] = runner

    def runner(self, task_type: str) -> Callable[[Callable[[Task], Optional[bool]]], Callable[[Task], Optional[bool]]]:
        """Decorator registering a plain function as the runner for `task_type`."""

        def decorator(func: Callable[[Task], Optional[bool]]) -> Callable[[Task], Optional[bool]]:
            self.register(task_type, CallableTaskRunner(func))
            return func

        return decorator

    def get(self, task_type: Optional[str]) -> TaskRunner:
        if task_type is None or not self.has(task_type):
            raise TaskRunnerNotFoundError(task_type)
        return self._runners[task_type]

    def has(self, task_type: str) -> bool:
        return task_type in self._runners

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def task_types(self) -> List[str]:
        return sorted(self._runners)

    def __contains__(self, task_type: object) -> bool:
        return isinstance(task_type, str) and self.has(task_type)

    def __len__(self) -> int:
        return len(self._runners)
