"""
Command-line consumer loop.

    sqs-task-runner QUEUE [--wait-time 20] [--worker-time 300] [--jobs 1]
                          [--sleep-if-empty 0] [--sleep-on-exception N]
                          [--iterations 1] [--runners module:attr]
                          [--check-termination]

QUEUE names a queue configured through `TASK_QUEUE_<NAME>_*` environment
variables (see `config`). The process exits nonzero only when polling itself
fails; individual task failures are logged by the queue manager and never
reach this level.
"""

import sys
import time
from typing import Optional

import click
import requests
from aws_lambda_powertools import Logger

from .manager import SERVICE_NAME, QueueManager
from .queues import QueueRegistry

logger = Logger(service=SERVICE_NAME, child=True)

TERMINATION_URL = "http://169.254.169.254/latest/meta-data/spot/termination-time"
TERMINATION_GRACE_SECONDS = 5 * 60


def termination_notice_present(url: str = TERMINATION_URL, timeout: float = 2.0) -> bool:
    """
    Checks the EC2 metadata endpoint for a spot instance termination notice.

    The endpoint answers 404 until the instance is marked for termination.
    Anything else counts as a notice. A connection failure means we are not on
    EC2, or cannot tell, and counts as no notice.
    """
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.warning(f"Unable to check for spot termination: {e}")
        return False
    return response.status_code != 404


def build_manager(queue: str, runners: Optional[str]) -> QueueManager:
    return QueueRegistry.from_env([queue], runners=runners).get_queue(queue)


def _sleep(seconds: int) -> None:
    if seconds > 0:
        time.sleep(seconds)


@click.command()
@click.argument("queue")
@click.option("--wait-time", type=int, default=QueueManager.DEFAULT_WAIT_TIME, show_default=True,
              help="Seconds to long-poll for a task before giving up on this round.")
@click.option("--worker-time", type=int, default=QueueManager.DEFAULT_WORKER_TIME, show_default=True,
              help="Seconds a worker has to complete a task before SQS releases it back to the queue.")
@click.option("--jobs", type=click.IntRange(1, 10), default=QueueManager.DEFAULT_JOB_COUNT, show_default=True,
              help="How many tasks to fetch per poll.")
@click.option("--sleep-if-empty", type=int, default=0, show_default=True,
              help="Seconds to sleep after a poll that found no tasks.")
@click.option("--sleep-on-exception", type=int, default=None,
              help="Seconds to sleep before exiting on an error. Defaults to --sleep-if-empty.")
@click.option("--iterations", type=click.IntRange(0), default=1, show_default=True,
              help="How many polls to run; 0 polls until stopped.")
@click.option("--runners", default=None,
              help="Import path of the task runner registry, e.g. 'myapp.tasks:registry'.")
@click.option("--check-termination", is_flag=True, default=False,
              help="Exit if this spot instance is about to be terminated.")
def main(
    queue: str,
    wait_time: int,
    worker_time: int,
    jobs: int,
    sleep_if_empty: int,
    sleep_on_exception: Optional[int],
    iterations: int,
    runners: Optional[str],
    check_termination: bool,
) -> None:
    """Poll QUEUE and dispatch tasks to their registered runners."""
    if check_termination and termination_notice_present():
        click.echo("Detected spot instance shutdown in progress, halting execution", err=True)
        time.sleep(TERMINATION_GRACE_SECONDS)
        sys.exit(1)

    if sleep_on_exception is None:
        sleep_on_exception = sleep_if_empty

    manager = build_manager(queue, runners)

    completed = 0
    while iterations == 0 or completed < iterations:
        try:
            processed = manager.poll(wait_time, worker_time, jobs)
        except Exception:
            logger.exception("Polling failed.", extra={"queue": queue})
            # Wait before exiting to prevent rapid-fire restarts.
            _sleep(sleep_on_exception)
            raise

        completed += 1
        if processed == 0:
            _sleep(sleep_if_empty)


if __name__ == "__main__":
    main()
