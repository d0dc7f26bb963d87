from unittest.mock import MagicMock

import pytest
import requests
from click.testing import CliRunner

from sqs_task_queue import runner
from sqs_task_queue.exceptions import ConfigurationError
from sqs_task_queue.manager import QueueManager

QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/image-jobs.fifo"


@pytest.fixture
def manager(monkeypatch):
    manager = MagicMock()
    manager.poll.return_value = 1
    built = []

    def _build(queue, runners):
        built.append((queue, runners))
        return manager

    monkeypatch.setattr(runner, "build_manager", _build)
    manager.built = built
    return manager


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(runner.time, "sleep", calls.append)
    return calls


def _invoke(*args):
    return CliRunner().invoke(runner.main, list(args))


def test_single_poll_with_defaults(manager, sleeps):
    result = _invoke("image-jobs")

    assert result.exit_code == 0, result.output
    manager.poll.assert_called_once_with(20, 300, 1)
    assert manager.built == [("image-jobs", None)]
    assert sleeps == []


def test_options_are_passed_through(manager, sleeps):
    result = _invoke("image-jobs", "--wait-time", "5", "--worker-time", "60", "--jobs", "10", "--runners", "a.b:c")

    assert result.exit_code == 0, result.output
    manager.poll.assert_called_once_with(5, 60, 10)
    assert manager.built == [("image-jobs", "a.b:c")]


def test_jobs_above_receive_limit_are_rejected(manager, sleeps):
    result = _invoke("image-jobs", "--jobs", "11")

    assert result.exit_code == 2
    manager.poll.assert_not_called()


def test_sleeps_only_after_empty_polls(manager, sleeps):
    manager.poll.side_effect = [0, 2, 0]

    result = _invoke("image-jobs", "--iterations", "3", "--sleep-if-empty", "5")

    assert result.exit_code == 0, result.output
    assert manager.poll.call_count == 3
    assert sleeps == [5, 5]


def test_poll_failure_sleeps_then_exits_nonzero(manager, sleeps):
    manager.poll.side_effect = RuntimeError("receive failed")

    result = _invoke("image-jobs", "--iterations", "0", "--sleep-if-empty", "5", "--sleep-on-exception", "30")

    assert result.exit_code == 1
    assert isinstance(result.exception, RuntimeError)
    assert sleeps == [30]


def test_sleep_on_exception_defaults_to_sleep_if_empty(manager, sleeps):
    manager.poll.side_effect = RuntimeError("receive failed")

    _invoke("image-jobs", "--sleep-if-empty", "7")

    assert sleeps == [7]


def test_termination_notice_halts_before_polling(manager, sleeps, monkeypatch):
    monkeypatch.setattr(runner.requests, "get", MagicMock(return_value=MagicMock(status_code=200)))

    result = _invoke("image-jobs", "--check-termination")

    assert result.exit_code == 1
    assert "spot instance shutdown" in result.output
    assert sleeps == [runner.TERMINATION_GRACE_SECONDS]
    manager.poll.assert_not_called()


def test_no_termination_notice_continues(manager, sleeps, monkeypatch):
    monkeypatch.setattr(runner.requests, "get", MagicMock(return_value=MagicMock(status_code=404)))

    result = _invoke("image-jobs", "--check-termination")

    assert result.exit_code == 0, result.output
    manager.poll.assert_called_once()


def test_unreachable_metadata_endpoint_counts_as_no_notice(monkeypatch):
    monkeypatch.setattr(runner.requests, "get", MagicMock(side_effect=requests.ConnectionError("no route")))

    assert runner.termination_notice_present() is False


def test_build_manager_from_environment(monkeypatch):
    monkeypatch.setenv("TASK_QUEUE_IMAGE_JOBS_URL", QUEUE_URL)
    monkeypatch.setenv("TASK_QUEUE_IMAGE_JOBS_RUNNERS", "sample_runners:build_registry")

    manager = runner.build_manager("image-jobs", None)

    assert isinstance(manager, QueueManager)
    assert manager.queue_url == QUEUE_URL
    assert manager.region == "eu-west-1"
    assert manager.registry.has("resize-image")
    assert manager.registry.frozen


def test_build_manager_requires_runners(monkeypatch):
    monkeypatch.setenv("TASK_QUEUE_IMAGE_JOBS_URL", QUEUE_URL)
    monkeypatch.delenv("TASK_QUEUE_IMAGE_JOBS_RUNNERS", raising=False)

    with pytest.raises(ConfigurationError):
        runner.build_manager("image-jobs", None)
