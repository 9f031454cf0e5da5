"""Worker supervisor: one timer-driven import thread per source."""

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from firedragon.domain.errors import NotFoundError, WorkerStateError
from firedragon.importer.orchestrator import ImportOrchestrator, ImportSource
from firedragon.utils.date_parser import utcnow

logger = logging.getLogger(__name__)

STOPPED = "stopped"
RUNNING = "running"
ERROR = "error"

DEFAULT_STOP_TIMEOUT = 30.0


@dataclass(frozen=True)
class WorkerStatus:
    """Point-in-time snapshot of one worker."""

    name: str
    state: str = STOPPED
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    error_count: int = 0
    started_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    imported_count: int = 0


class _Worker:
    def __init__(self, source: ImportSource, interval: timedelta):
        self.source = source
        self.interval = interval
        self.status = WorkerStatus(name=source.name)
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None


class WorkerSupervisor:
    """Starts, stops and reports on import workers.

    Each worker runs one import cycle as soon as it starts and then one per
    interval until stopped. Stopping sets the worker's event: backoff waits
    and the interval wait end at once, and the cycle stops before its next
    transaction. A fatal error ends the worker; it is recorded in the
    status and the worker is left stopped so that it can be restarted.
    """

    def __init__(self, orchestrator: ImportOrchestrator):
        self.orchestrator = orchestrator
        self._workers: dict[str, _Worker] = {}
        self._lock = threading.Lock()

    def register(self, name: str, source: ImportSource) -> None:
        """Register a worker for ``source``.

        Raises:
            WorkerStateError: If a worker with this name exists
        """
        with self._lock:
            if name in self._workers:
                raise WorkerStateError(f"Worker '{name}' is already registered")
            self._workers[name] = _Worker(source, source.config.interval)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._workers)

    def _get(self, name: str) -> _Worker:
        worker = self._workers.get(name)
        if worker is None:
            raise NotFoundError(f"Worker '{name}' not found")
        return worker

    def start(self, name: str) -> None:
        """Start a stopped worker.

        Raises:
            NotFoundError: If no worker has this name
            WorkerStateError: If it is already running
        """
        with self._lock:
            worker = self._get(name)
            if worker.status.state == RUNNING:
                raise WorkerStateError(f"Worker '{name}' is already running")
            worker.stop_event = threading.Event()
            worker.thread = threading.Thread(
                target=self._run, args=(worker,), name=f"firedragon-{name}", daemon=True
            )
            worker.status = replace(worker.status, state=RUNNING, started_at=utcnow())
            worker.thread.start()
        logger.info("Worker %s started (interval %s)", name, worker.interval)

    def stop(self, name: str, timeout: float = DEFAULT_STOP_TIMEOUT) -> bool:
        """Signal a running worker to stop and wait for it.

        Returns:
            True if the worker stopped within ``timeout``

        Raises:
            NotFoundError: If no worker has this name
            WorkerStateError: If it is not running
        """
        with self._lock:
            worker = self._get(name)
            if worker.status.state != RUNNING:
                raise WorkerStateError(f"Worker '{name}' is not running")
            worker.stop_event.set()
            thread = worker.thread

        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Worker %s did not stop within %ss", name, timeout)
                return False
        return True

    def start_all(self) -> None:
        """Start every worker that is not running."""
        for name in self.names():
            if self.status(name).state != RUNNING:
                self.start(name)

    def stop_all(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> list[str]:
        """Signal every running worker, then wait for all within ``timeout``.

        Returns:
            Names of workers still running when the timeout expired
        """
        with self._lock:
            threads = []
            for name, worker in self._workers.items():
                if worker.status.state == RUNNING:
                    worker.stop_event.set()
                    if worker.thread is not None:
                        threads.append((name, worker.thread))

        deadline = time.monotonic() + timeout
        lingering = []
        for name, thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                lingering.append(name)

        if lingering:
            logger.warning("Workers did not stop in time: %s", ", ".join(lingering))
        return lingering

    def status(self, name: str) -> WorkerStatus:
        """Snapshot of one worker.

        Raises:
            NotFoundError: If no worker has this name
        """
        with self._lock:
            return self._get(name).status

    def statuses(self) -> dict[str, WorkerStatus]:
        with self._lock:
            return {name: worker.status for name, worker in self._workers.items()}

    def _update(self, worker: _Worker, **changes) -> None:
        with self._lock:
            worker.status = replace(worker.status, **changes)

    def _run(self, worker: _Worker) -> None:
        name = worker.source.name
        stop_event = worker.stop_event
        try:
            while not stop_event.is_set():
                result = self.orchestrator.run_cycle(worker.source, cancel=stop_event)
                with self._lock:
                    status = worker.status
                    changes = {
                        "last_run_at": utcnow(),
                        "imported_count": status.imported_count + result.imported,
                    }
                    if result.errors:
                        changes.update(
                            last_error=result.errors[-1],
                            last_error_at=utcnow(),
                            error_count=status.error_count + len(result.errors),
                        )
                    worker.status = replace(status, **changes)

                if stop_event.wait(worker.interval.total_seconds()):
                    break
        except Exception as e:
            logger.exception("Worker %s failed: %s", name, e)
            with self._lock:
                worker.status = replace(
                    worker.status,
                    state=ERROR,
                    last_error=str(e),
                    last_error_at=utcnow(),
                    error_count=worker.status.error_count + 1,
                )
            logger.info("Worker %s moved to %s", name, ERROR)

        self._update(worker, state=STOPPED)
        logger.info("Worker %s stopped", name)
