import logging
import threading
from typing import Optional

from ..errors import PeakAlignError
from ..models import ComputationJob
from .queue import JobQueue
from .runner import JobRunner

logger = logging.getLogger(__name__)


class WorkerPool:
    """Bounded set of threads draining a job queue."""

    def __init__(
        self,
        queue: JobQueue,
        runner: JobRunner,
        concurrency: int = 2,
        poll_interval: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.runner = runner
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Start ``concurrency`` daemon workers that poll until stopped."""
        if self.running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._serve, name=f"peakalign-worker-{i}", daemon=True
            )
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Started %d workers", self.concurrency)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal workers to exit after their current job and join them."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Workers stopped")

    def _run_one(self, job: ComputationJob) -> None:
        try:
            self.runner.run(job)
        except PeakAlignError as e:
            logger.error("Could not record outcome of job %s: %s", job.id, e)

    def _serve(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.queue.wait_for_job(timeout=self.poll_interval)
            except PeakAlignError as e:
                logger.error("Could not claim a job: %s", e)
                self._stop_event.wait(self.poll_interval)
                continue
            if job is not None:
                self._run_one(job)

    def run_until_idle(self) -> int:
        """Process jobs on ``concurrency`` threads until none is due.

        Returns:
            Number of job runs performed, retries included
        """
        processed = [0] * self.concurrency

        def drain(slot: int) -> None:
            while True:
                try:
                    job = self.queue.dequeue()
                except PeakAlignError as e:
                    logger.error("Could not claim a job: %s", e)
                    return
                if job is None:
                    return
                self._run_one(job)
                processed[slot] += 1

        threads = [
            threading.Thread(target=drain, args=(i,), name=f"peakalign-drain-{i}")
            for i in range(self.concurrency)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return sum(processed)
