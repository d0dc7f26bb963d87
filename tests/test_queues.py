import pytest

from sqs_task_queue.exceptions import ConfigurationError, UnknownQueueError
from sqs_task_queue.manager import QueueManager
from sqs_task_queue.queues import QueueRegistry

IMAGE_JOBS_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/image-jobs.fifo"
EMAILS_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/emails"


@pytest.fixture
def configured_queues(monkeypatch):
    monkeypatch.setenv("TASK_QUEUE_IMAGE_JOBS_URL", IMAGE_JOBS_URL)
    monkeypatch.setenv("TASK_QUEUE_IMAGE_JOBS_RUNNERS", "sample_runners:build_registry")
    monkeypatch.setenv("TASK_QUEUE_EMAILS_URL", EMAILS_URL)
    monkeypatch.setenv("TASK_QUEUE_EMAILS_REGION", "us-east-1")
    monkeypatch.setenv("TASK_QUEUE_EMAILS_RUNNERS", "sample_runners:build_registry")


def test_get_queue_returns_the_named_manager(registry, mock_client):
    emails = QueueManager(EMAILS_URL, "eu-west-1", registry, sqs_client=mock_client)
    queues = QueueRegistry({"emails": emails})

    assert queues.get_queue("emails") is emails
    assert "emails" in queues
    assert len(queues) == 1


def test_unknown_queue_name_raises(registry, mock_client):
    queues = QueueRegistry({"emails": QueueManager(EMAILS_URL, "eu-west-1", registry, sqs_client=mock_client)})

    with pytest.raises(UnknownQueueError) as excinfo:
        queues.get_queue("image-jobs")
    assert excinfo.value.name == "image-jobs"
    assert isinstance(excinfo.value, LookupError)
    assert isinstance(excinfo.value, ConfigurationError)


def test_queues_returns_a_copy(registry, mock_client):
    queues = QueueRegistry({"emails": QueueManager(EMAILS_URL, "eu-west-1", registry, sqs_client=mock_client)})

    queues.queues.clear()

    assert "emails" in queues


def test_from_env_builds_every_named_queue(configured_queues):
    queues = QueueRegistry.from_env(["image-jobs", "emails"])

    assert set(queues.queues) == {"image-jobs", "emails"}
    assert queues.get_queue("image-jobs").queue_url == IMAGE_JOBS_URL
    assert queues.get_queue("image-jobs").fifo
    assert queues.get_queue("emails").region == "us-east-1"
    assert queues.get_queue("emails").registry.frozen


def test_from_env_reads_names_from_task_queues(configured_queues, monkeypatch):
    monkeypatch.setenv("TASK_QUEUES", " image-jobs, emails ,")

    queues = QueueRegistry.from_env()

    assert set(queues.queues) == {"image-jobs", "emails"}


def test_from_env_without_names_requires_task_queues(monkeypatch):
    monkeypatch.delenv("TASK_QUEUES", raising=False)

    with pytest.raises(ValueError):
        QueueRegistry.from_env()


def test_from_env_runner_override_applies_to_every_queue(configured_queues, monkeypatch):
    monkeypatch.delenv("TASK_QUEUE_EMAILS_RUNNERS")

    queues = QueueRegistry.from_env(["emails"], runners="sample_runners:build_registry")

    assert queues.get_queue("emails").registry.has("resize-image")


def test_from_env_rejects_queue_without_runners(configured_queues, monkeypatch):
    monkeypatch.delenv("TASK_QUEUE_EMAILS_RUNNERS")

    with pytest.raises(ConfigurationError):
        QueueRegistry.from_env(["image-jobs", "emails"])


def test_from_env_requires_queue_url(monkeypatch):
    monkeypatch.delenv("TASK_QUEUE_REPORTS_URL", raising=False)

    with pytest.raises(ValueError):
        QueueRegistry.from_env(["reports"], runners="sample_runners:build_registry")
