"""Task manager for subscription tasks."""

from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection

from perilbus.concurrency.tasks import SubscriptionTask
from perilbus.logger import logger
from perilbus.pubsub.subscriber import Subscriber


class TaskManager:
    """Public-facing controller for the fleet of subscription tasks."""

    def __init__(self) -> None:
        """Initializes the TaskManager."""
        self._tasks: list[SubscriptionTask] = []

    def create_task(
        self, subscriber: Subscriber, connection: BlockingConnection, channel: BlockingChannel
    ) -> SubscriptionTask:
        """Registers a provisioned subscriber to be run.

        Args:
            subscriber: The subscriber whose handler the task runs.
            connection: The dedicated connection opened for the subscriber.
            channel: The channel its queue was provisioned on.

        Returns:
            The registered task, not started yet.
        """
        task = SubscriptionTask(subscriber, connection, channel)
        self._tasks.append(task)
        return task

    def start(self) -> None:
        """Starts every task that is not running yet, one thread each."""
        for task in self._tasks:
            if task.started:
                continue

            task.start()
            logger.debug(f"Started the subscription task of {task.subscriber.name}")

    def alive(self) -> dict[str, bool]:
        """Checks if the tasks are alive.

        Returns:
            A dictionary mapping subscriber names to their liveness status.
        """
        liveness: dict[str, bool] = {}
        for task in self._tasks:
            liveness[task.subscriber.name] = task.task_alive()
        return liveness

    def ready(self) -> dict[str, bool]:
        """Checks if the tasks are consuming.

        Returns:
            A dictionary mapping subscriber names to their readiness status.
        """
        readiness: dict[str, bool] = {}
        for task in self._tasks:
            readiness[task.subscriber.name] = task.task_ready()
        return readiness

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stops every task and waits for their threads to finish.

        Args:
            timeout: Seconds to wait for each thread.
        """
        for task in self._tasks:
            task.shutdown()

        for task in self._tasks:
            task.join(timeout)

        self._tasks.clear()
