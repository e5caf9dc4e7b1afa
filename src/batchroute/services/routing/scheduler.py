"""Background route computation, one live search per batch."""

from __future__ import annotations

import logging
import threading
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from ...config import settings
from ...errors import NotFound, OptimizationCancelled
from ...models.domain import Coordinates, Depot, OptimizedRoute
from ...models.events import RouteOptimized
from ...persistence.filesystem import FileStorage
from ...persistence.store import BatchStore
from ..events import EventBus
from ..outputs.route_formatter import route_to_csv, route_to_json
from .optimizer import RouteOptimizer, route_sequences

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Job:
    batch_id: str
    cancel: threading.Event = field(default_factory=threading.Event)
    future: Optional[Future] = None


class OptimizationScheduler:
    """Runs route searches on a thread pool.

    A new request for a batch cancels the one in flight; a cancelled or
    superseded search never writes anything. Results are applied under a
    per-batch lock so stop sequences and the stored route change together.
    """

    def __init__(
        self,
        store: BatchStore,
        optimizer: RouteOptimizer | None = None,
        bus: EventBus | None = None,
        *,
        depot: Depot | None = None,
        workers: int | None = None,
        storage: FileStorage | None = None,
    ) -> None:
        self.store = store
        self.optimizer = optimizer or RouteOptimizer()
        self.bus = bus
        self.depot = depot or Depot(settings.depot_name, settings.depot_latitude, settings.depot_longitude)
        self.storage = storage
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.optimizer_workers, thread_name_prefix="route-search"
        )
        self._lock = threading.Lock()
        self._active: dict[str, _Job] = {}
        self._apply_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def request(
        self,
        batch_id: str,
        origin: Coordinates | None = None,
        *,
        reoptimize: bool = False,
    ) -> Future:
        """Queue a search; the future resolves to the applied route or None if superseded."""

        with self._lock:
            previous = self._active.get(batch_id)
            if previous is not None:
                logger.info(f"Superseding route search for batch {batch_id}")
                previous.cancel.set()
            job = _Job(batch_id=batch_id)
            self._active[batch_id] = job
            job.future = self._executor.submit(self._run, job, origin, reoptimize)
        return job.future

    def is_running(self, batch_id: str) -> bool:
        with self._lock:
            return batch_id in self._active

    def _run(self, job: _Job, origin: Coordinates | None, reoptimize: bool) -> OptimizedRoute | None:
        try:
            return self._execute(job, origin, reoptimize)
        except Exception:
            logger.exception(f"Route search for batch {job.batch_id} failed")
            raise

    def _apply_lock(self, batch_id: str) -> threading.Lock:
        with self._lock:
            lock = self._apply_locks.get(batch_id)
            if lock is None:
                lock = self._apply_locks[batch_id] = threading.Lock()
            return lock

    def _execute(self, job: _Job, origin: Coordinates | None, reoptimize: bool) -> OptimizedRoute | None:
        try:
            batch = self.store.get_batch(job.batch_id)
            if batch is None:
                raise NotFound(f"Batch {job.batch_id} not found")
            stops = batch.ordered_stops()
            start = origin or self.depot.coordinates
            try:
                if reoptimize:
                    route = self.optimizer.reoptimize(
                        stops, start, batch_id=job.batch_id, cancel_event=job.cancel
                    )
                else:
                    route = self.optimizer.optimize(
                        stops, start, batch_id=job.batch_id, cancel_event=job.cancel
                    )
            except OptimizationCancelled as exc:
                logger.info(f"Batch {job.batch_id}: {exc}")
                return None

            with self._apply_lock(job.batch_id):
                with self._lock:
                    current = self._active.get(job.batch_id) is job
                if not current or job.cancel.is_set():
                    logger.info(f"Discarding superseded route for batch {job.batch_id}")
                    return None
                self.store.apply_route(route, route_sequences(route))
        finally:
            with self._lock:
                if self._active.get(job.batch_id) is job:
                    del self._active[job.batch_id]

        if self.bus is not None:
            self.bus.publish(RouteOptimized(batch_id=job.batch_id, route=route))
        if self.storage is not None:
            self._export(route)
        return route

    def _export(self, route: OptimizedRoute) -> None:
        batch = self.store.get_batch(route.batch_id)
        stops = batch.stops if batch else []
        run_dir = self.storage.make_run_directory(prefix=f"route_{route.batch_id}")
        self.storage.write_json(run_dir / "summary.json", route_to_json(route, stops))
        self.storage.write_csv(run_dir / "stops.csv", route_to_csv(route, stops))

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            for job in self._active.values():
                job.cancel.set()
        self._executor.shutdown(wait=wait)
